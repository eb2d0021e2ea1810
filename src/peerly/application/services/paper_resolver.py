# src/peerly/application/services/paper_resolver.py
"""
DOI / PMID resolution.

resolve_by_doi:
    normalize -> validity gate -> per-DOI claim -> global slot -> fan-out fetch
    -> merge -> persist (insert, then update on duplicate, then synthetic row)
    -> background citing-DOI enrichment

Nothing here raises to the caller for lookup failures; every outcome is a
LookupResult whose ``status`` says what happened.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from peerly.application.ports.metadata_source_port import CitingWorksPort
from peerly.application.ports.paper_store_port import (
    DuplicatePaperError,
    PaperStoreError,
    PaperStorePort,
)
from peerly.application.services.field_merger import FieldMerger
from peerly.application.services.metadata_fetcher import (
    MetadataFetcher,
    SourceOutcome,
    any_rate_limited,
    partials_of,
)
from peerly.application.services.rate_limiter import RateLimiter
from peerly.domain.doi import is_valid, normalize
from peerly.domain.lookup import LookupResult, LookupStatus
from peerly.domain.paper import (
    ExternalPaperRecord,
    SourceName,
    paper_row_to_record,
    record_to_paper_fields,
)
from peerly.infrastructure.api_clients.base import APIError, RateLimitedError
from peerly.infrastructure.sources.pubmed_client import (
    PubMedClient,
    extract_doi,
    is_valid_pmid,
    summary_to_record,
)
from peerly.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def persist_record(
    store: Optional[PaperStorePort], record: ExternalPaperRecord
) -> Tuple[Dict[str, Any], bool]:
    """
    Insert, retry once as update on duplicate, else return an unpersisted row.

    Returns ``(paper_row, persisted)``; an unpersisted row has ``id`` None.
    """
    fields = record_to_paper_fields(record)
    if store is None:
        return {"id": None, "doi": record.doi, **fields}, False
    try:
        return store.upsert_paper(record.doi, fields), True
    except DuplicatePaperError:
        logger.info("Paper %s already exists, updating instead", record.doi)
        try:
            return store.update_paper(record.doi, fields), True
        except PaperStoreError as exc:
            logger.warning("Update after duplicate failed for %s: %s", record.doi, exc)
            Logger.error(f"Persist failed for {record.doi}: {exc}", file=LogFiles.ERROR)
    except PaperStoreError as exc:
        logger.warning("Persist failed for %s: %s", record.doi, exc)
        Logger.error(f"Persist failed for {record.doi}: {exc}", file=LogFiles.ERROR)
    return {"id": None, "doi": record.doi, **fields}, False


class PaperResolver:
    """Caller-facing DOI/PMID lookup over sources, rate limiter and Paper Store."""

    BATCH_SIZE = 10
    BATCH_PAUSE = 0.2

    def __init__(
        self,
        *,
        fetcher: MetadataFetcher,
        rate_limiter: RateLimiter,
        store: Optional[PaperStorePort] = None,
        merger: Optional[FieldMerger] = None,
        pubmed: Optional[PubMedClient] = None,
        citing_source: Optional[CitingWorksPort] = None,
        first_lookup_delay: float = 0.1,
        sleep: Optional[Sleep] = None,
    ):
        self._fetcher = fetcher
        self._limiter = rate_limiter
        self._store = store
        self._merger = merger or FieldMerger()
        self._pubmed = pubmed
        self._citing_source = citing_source
        self._first_lookup_delay = max(0.0, first_lookup_delay)
        self._sleep: Sleep = sleep or asyncio.sleep
        self._background: Set[asyncio.Task] = set()

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    # ── DOI ─────────────────────────────────────────────────────

    async def resolve_by_doi(self, doi_or_url: str) -> LookupResult:
        doi = normalize(doi_or_url)
        if not is_valid(doi):
            logger.debug("Rejected non-DOI input %r", doi_or_url)
            return LookupResult(status=LookupStatus.INVALID_INPUT, record=ExternalPaperRecord(doi=doi))

        first_time = not self._limiter.is_known(doi)
        if not self._limiter.try_claim(doi):
            return self._cooldown_result(doi)

        if first_time and self._first_lookup_delay > 0:
            await self._sleep(self._first_lookup_delay)
        await self._limiter.acquire_global()

        outcomes = await self._fetcher.fetch_all(doi)
        if any_rate_limited(outcomes):
            self._limiter.penalize()
        errors = [f"{o.source.value}: {o.error}" for o in outcomes if o.error]

        record = self._merger.merge(doi, partials_of(outcomes))
        if record.is_empty:
            return self._empty_result(doi, outcomes, errors)

        paper, persisted = self._persist(record)
        Logger.info(
            f"Resolved {doi} from {','.join(record.ordered_sources())} (persisted={persisted})",
            file=LogFiles.RESOLVER,
        )

        if record.title and record.authors and not record.citing_dois:
            self._schedule_citing_enrichment(record, self._openalex_id(outcomes), persisted)

        return LookupResult(
            status=LookupStatus.OK,
            record=record,
            paper=paper,
            persisted=persisted,
            errors=errors,
        )

    async def get_or_resolve(self, doi_or_url: str) -> LookupResult:
        """Stored paper if the store has the DOI, otherwise a fresh lookup."""
        doi = normalize(doi_or_url)
        if not is_valid(doi):
            return LookupResult(status=LookupStatus.INVALID_INPUT, record=ExternalPaperRecord(doi=doi))
        stored = self._stored_paper(doi)
        if stored is not None:
            return LookupResult(
                status=LookupStatus.OK,
                record=paper_row_to_record(stored),
                paper=stored,
                cached=True,
                persisted=True,
            )
        return await self.resolve_by_doi(doi)

    async def resolve_many(
        self, dois: Iterable[str], *, batch_size: int = BATCH_SIZE
    ) -> Dict[str, LookupResult]:
        """Resolve DOIs in batches; keyed by the input string, failures skipped."""
        items = list(dict.fromkeys(dois))
        batch_size = max(1, batch_size)
        results: Dict[str, LookupResult] = {}

        for start in range(0, len(items), batch_size):
            batch = items[start : start + batch_size]
            settled = await asyncio.gather(
                *(self.resolve_by_doi(doi) for doi in batch), return_exceptions=True
            )
            for doi, result in zip(batch, settled):
                if isinstance(result, BaseException):
                    logger.warning("Failed to resolve %s: %s", doi, result)
                    continue
                results[doi] = result
            if start + batch_size < len(items):
                await self._sleep(self.BATCH_PAUSE)

        logger.info("Batch lookup resolved %d/%d DOIs", len(results), len(items))
        return results

    # ── PMID ────────────────────────────────────────────────────

    async def resolve_by_pmid(self, pmid: str) -> LookupResult:
        """
        PMID -> DOI -> full DOI resolution; falls back to a ``pmid:<n>`` partial
        record built from the PubMed summary when no DOI exists.
        """
        pmid = (pmid or "").strip()
        if self._pubmed is None or not is_valid_pmid(pmid):
            return LookupResult(status=LookupStatus.INVALID_INPUT)

        await self._limiter.acquire_global()
        try:
            summary = await self._pubmed.fetch_summary(pmid)
        except APIError as exc:
            logger.warning("PubMed lookup failed for PMID %s: %s", pmid, exc)
            if getattr(exc, "status", None) == 429:
                self._limiter.penalize()
            return LookupResult(status=LookupStatus.TRANSPORT_FAILURE, errors=[f"pubmed: {exc}"])

        if summary is None:
            return LookupResult(status=LookupStatus.NOT_FOUND)

        doi = extract_doi(summary)
        if doi:
            Logger.info(f"PMID {pmid} -> {doi}", file=LogFiles.RESOLVER)
            return await self.resolve_by_doi(doi)

        record = summary_to_record(pmid, summary)
        if record is None:
            return LookupResult(status=LookupStatus.NOT_FOUND)
        Logger.info(f"PMID {pmid} has no DOI, returning partial record", file=LogFiles.RESOLVER)
        return LookupResult(status=LookupStatus.OK, record=record)

    # ── persistence ─────────────────────────────────────────────

    def _persist(self, record: ExternalPaperRecord) -> Tuple[Dict[str, Any], bool]:
        return persist_record(self._store, record)

    def _stored_paper(self, doi: str) -> Optional[Dict[str, Any]]:
        if self._store is None:
            return None
        try:
            return self._store.get_paper_by_doi(doi)
        except PaperStoreError as exc:
            logger.warning("Store read failed for %s: %s", doi, exc)
            return None

    def _cooldown_result(self, doi: str) -> LookupResult:
        stored = self._stored_paper(doi)
        logger.debug("DOI %s in cooldown, serving %s", doi, "stored paper" if stored else "nothing")
        record = paper_row_to_record(stored) if stored else ExternalPaperRecord(doi=doi)
        record.doi = doi
        return LookupResult(
            status=LookupStatus.COOLDOWN,
            record=record,
            paper=stored,
            cached=stored is not None,
            persisted=stored is not None,
        )

    def _empty_result(
        self, doi: str, outcomes: List[SourceOutcome], errors: List[str]
    ) -> LookupResult:
        failed_all = bool(outcomes) and all(not o.ok for o in outcomes)
        status = LookupStatus.TRANSPORT_FAILURE if failed_all else LookupStatus.NOT_FOUND
        Logger.warning(f"No metadata for {doi} ({status.value})", file=LogFiles.RESOLVER)
        return LookupResult(status=status, record=ExternalPaperRecord(doi=doi), errors=errors)

    # ── background enrichment ───────────────────────────────────

    @staticmethod
    def _openalex_id(outcomes: List[SourceOutcome]) -> Optional[str]:
        for outcome in outcomes:
            if outcome.source == SourceName.OPENALEX and outcome.partial is not None:
                return outcome.partial.external_id
        return None

    def _schedule_citing_enrichment(
        self, record: ExternalPaperRecord, work_id: Optional[str], persisted: bool
    ) -> None:
        if self._citing_source is None:
            return
        task = asyncio.create_task(self._enrich_citing(record, work_id, persisted))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _enrich_citing(
        self, record: ExternalPaperRecord, work_id: Optional[str], persisted: bool
    ) -> None:
        await self._limiter.acquire_global()
        try:
            dois = await self._citing_source.citing_dois(record.doi, work_id=work_id)
        except RateLimitedError as exc:
            logger.warning("Citing-DOI enrichment rate limited for %s: %s", record.doi, exc)
            self._limiter.penalize()
            return
        except APIError as exc:
            logger.warning("Citing-DOI enrichment failed for %s: %s", record.doi, exc)
            return
        if not dois:
            return
        record.citing_dois = set(dois)
        if persisted and self._store is not None:
            try:
                self._store.update_paper(record.doi, {"citing_dois": sorted(record.citing_dois)})
            except PaperStoreError as exc:
                logger.warning("Could not store citing DOIs for %s: %s", record.doi, exc)
                return
        Logger.info(f"Enriched {record.doi} with {len(dois)} citing DOIs", file=LogFiles.RESOLVER)

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for outstanding background enrichment."""
        while self._background:
            pending = list(self._background)
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning("Background enrichment raised: %s", result)
            self._background.difference_update(pending)

    async def close(self) -> None:
        await self.drain()
        closers: List[Any] = list(self._fetcher.sources)
        for extra in (self._pubmed, self._citing_source):
            if extra is not None and all(extra is not c for c in closers):
                closers.append(extra)
        for closer in closers:
            try:
                await closer.close()
            except Exception as exc:
                logger.warning("Error closing %s: %s", type(closer).__name__, exc)
