"""Store-first keyword search with external top-up."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from peerly.application.ports.metadata_source_port import MetadataSourcePort
from peerly.application.ports.paper_store_port import PaperStoreError, PaperStorePort
from peerly.application.services.field_merger import FieldMerger
from peerly.application.services.paper_resolver import persist_record
from peerly.application.services.query_parser import (
    ParsedQuery,
    build_source_query,
    build_store_conditions,
    parse_search_query,
)
from peerly.application.services.rate_limiter import RateLimiter
from peerly.domain.doi import is_valid, normalize
from peerly.domain.paper import (
    SOURCE_PRIORITY,
    ExternalPaperRecord,
    PartialResult,
    SourceName,
    paper_row_to_record,
)
from peerly.infrastructure.api_clients.base import APIError, RateLimitedError
from peerly.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)


@dataclass
class KeywordSearchResult:
    """Ranked records plus where they came from."""

    query: str
    records: List[ExternalPaperRecord] = field(default_factory=list)
    local_hits: int = 0
    queried_sources: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)
    skipped_without_doi: int = 0


def _priority(source: MetadataSourcePort) -> int:
    try:
        return SOURCE_PRIORITY.index(source.source)
    except ValueError:
        return len(SOURCE_PRIORITY)


def dedup_key(partial: PartialResult) -> Optional[str]:
    """Canonical DOI, or a DOI-shaped external id; None means "skip this result"."""
    if partial.doi and is_valid(partial.doi):
        return normalize(partial.doi)
    if partial.external_id and is_valid(partial.external_id):
        return normalize(partial.external_id)
    return None


def rank_by_citations(records: Sequence[ExternalPaperRecord]) -> List[ExternalPaperRecord]:
    """Descending citation count, missing as zero; ties keep arrival order."""
    return sorted(records, key=lambda r: -(r.citation_count or 0))


class KeywordSearchService:
    """
    Keyword search over the Paper Store, topped up from external sources.

    External sources are queried one at a time in priority order and only while
    fewer than ``limit`` distinct DOIs have been collected.
    """

    DEFAULT_LOCAL_THRESHOLD = 5

    def __init__(
        self,
        sources: Sequence[MetadataSourcePort],
        *,
        store: Optional[PaperStorePort] = None,
        rate_limiter: Optional[RateLimiter] = None,
        merger: Optional[FieldMerger] = None,
        local_threshold: int = DEFAULT_LOCAL_THRESHOLD,
        persist: bool = False,
    ):
        self._sources = sorted(sources, key=_priority)
        self._store = store
        self._limiter = rate_limiter
        self._merger = merger or FieldMerger()
        self._local_threshold = max(0, local_threshold)
        self._persist = persist

    async def search(self, query: str, limit: int = 20) -> List[ExternalPaperRecord]:
        return (await self.search_detailed(query, limit=limit)).records

    async def search_detailed(self, query: str, *, limit: int = 20) -> KeywordSearchResult:
        parsed = parse_search_query(query)
        result = KeywordSearchResult(query=parsed.original)
        if parsed.is_empty or limit <= 0:
            return result

        records: List[ExternalPaperRecord] = []
        index: Dict[str, ExternalPaperRecord] = {}

        for row in self._search_store(parsed, limit):
            record = paper_row_to_record(row)
            key = normalize(record.doi)
            if not is_valid(key) or key in index:
                continue
            record.doi = key
            record.sources.add(SourceName.LOCAL)
            index[key] = record
            records.append(record)
        result.local_hits = len(records)

        new_records: List[ExternalPaperRecord] = []
        if result.local_hits < self._local_threshold and len(records) < limit:
            source_query = build_source_query(parsed)
            if source_query:
                new_records = await self._search_sources(source_query, limit, records, index, result)

        if self._persist and self._store is not None:
            for record in new_records:
                persist_record(self._store, record)

        result.records = rank_by_citations(records)[:limit]
        Logger.info(
            f"Search {parsed.original!r}: {len(result.records)} results "
            f"({result.local_hits} local, sources={','.join(result.queried_sources) or 'none'})",
            file=LogFiles.SEARCH,
        )
        return result

    def _search_store(self, parsed: ParsedQuery, limit: int) -> List[dict]:
        if self._store is None:
            return []
        conditions = build_store_conditions(parsed)
        if not conditions:
            return []
        try:
            return self._store.search_papers(conditions, limit=limit)
        except PaperStoreError as exc:
            logger.warning("Store search failed for %r: %s", parsed.original, exc)
            return []

    async def _search_sources(
        self,
        source_query: str,
        limit: int,
        records: List[ExternalPaperRecord],
        index: Dict[str, ExternalPaperRecord],
        result: KeywordSearchResult,
    ) -> List[ExternalPaperRecord]:
        if self._limiter is not None:
            await self._limiter.acquire_global()

        added: List[ExternalPaperRecord] = []
        for source in self._sources:
            if len(records) >= limit:
                break
            name = source.source.value
            result.queried_sources.append(name)
            try:
                partials = await source.search(source_query, limit=limit)
            except RateLimitedError as exc:
                logger.warning("Source %s rate limited during search: %s", name, exc)
                result.failed_sources.append(name)
                if self._limiter is not None:
                    self._limiter.penalize()
                continue
            except APIError as exc:
                logger.warning("Source %s search failed: %s", name, exc)
                result.failed_sources.append(name)
                continue
            except Exception as exc:
                logger.warning("Source %s returned an unusable search payload: %r", name, exc)
                result.failed_sources.append(name)
                continue

            for partial in partials:
                key = dedup_key(partial)
                if key is None:
                    result.skipped_without_doi += 1
                    continue
                existing = index.get(key)
                if existing is not None:
                    self._merger.merge_into(existing, partial)
                    continue
                if len(records) >= limit:
                    continue
                record = self._merger.merge(key, [partial])
                if record.is_empty:
                    continue
                index[key] = record
                records.append(record)
                added.append(record)
        return added
