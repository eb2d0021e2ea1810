# src/peerly/application/workflows/paper_lookup.py
"""
Paper lookup workflow.

Wires sources, rate limiter, Paper Store, resolver and keyword search from
PeerlySettings. One instance per process: the rate limiter it owns is the
process-wide cooldown ledger.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from peerly.application.ports.paper_store_port import PaperStorePort
from peerly.application.services.keyword_search_service import (
    KeywordSearchResult,
    KeywordSearchService,
)
from peerly.application.services.metadata_fetcher import MetadataFetcher
from peerly.application.services.paper_resolver import PaperResolver
from peerly.application.services.rate_limiter import RateLimiter
from peerly.config import PeerlySettings
from peerly.domain.lookup import LookupResult
from peerly.domain.paper import ExternalPaperRecord
from peerly.infrastructure.sources import OpenAlexSource, PubMedClient, build_sources
from peerly.infrastructure.stores.paper_store import PaperStore


class PaperLookupWorkflow:
    """
    Default composition of the lookup pipeline.

    Components are created lazily so that constructing the workflow never opens
    a database or HTTP session.
    """

    def __init__(
        self,
        settings: Optional[PeerlySettings] = None,
        *,
        store: Optional[PaperStorePort] = None,
        persist_search_results: bool = False,
    ):
        self.settings = settings or PeerlySettings.from_env()
        self._store = store
        self._persist_search_results = persist_search_results

        self._rate_limiter: Optional[RateLimiter] = None
        self._openalex: Optional[OpenAlexSource] = None
        self._sources: Optional[List] = None
        self._resolver: Optional[PaperResolver] = None
        self._search_service: Optional[KeywordSearchService] = None

    @property
    def store(self) -> PaperStorePort:
        if self._store is None:
            self._store = PaperStore(self.settings.db_url)
        return self._store

    @property
    def rate_limiter(self) -> RateLimiter:
        if self._rate_limiter is None:
            s = self.settings
            self._rate_limiter = RateLimiter(
                min_global_interval=s.min_global_interval,
                per_doi_cooldown=s.per_doi_cooldown,
                rate_limit_penalty=s.rate_limit_penalty,
                max_tracked=s.cooldown_ledger_size,
            )
        return self._rate_limiter

    @property
    def sources(self) -> List:
        if self._sources is None:
            s = self.settings
            self._sources = build_sources(
                email=s.contact_email, s2_api_key=s.s2_api_key, timeout=s.http_timeout
            )
            self._openalex = next(
                (src for src in self._sources if isinstance(src, OpenAlexSource)), None
            )
        return self._sources

    @property
    def resolver(self) -> PaperResolver:
        if self._resolver is None:
            s = self.settings
            sources = self.sources
            self._resolver = PaperResolver(
                fetcher=MetadataFetcher(sources),
                rate_limiter=self.rate_limiter,
                store=self.store,
                pubmed=PubMedClient(
                    email=s.contact_email, api_key=s.ncbi_api_key, timeout=s.http_timeout
                ),
                citing_source=self._openalex,
                first_lookup_delay=s.first_lookup_delay,
            )
        return self._resolver

    @property
    def search_service(self) -> KeywordSearchService:
        if self._search_service is None:
            self._search_service = KeywordSearchService(
                self.sources,
                store=self.store,
                rate_limiter=self.rate_limiter,
                local_threshold=self.settings.search_local_threshold,
                persist=self._persist_search_results,
            )
        return self._search_service

    async def resolve_doi(self, doi_or_url: str, *, refresh: bool = False) -> LookupResult:
        if refresh:
            return await self.resolver.resolve_by_doi(doi_or_url)
        return await self.resolver.get_or_resolve(doi_or_url)

    async def resolve_pmid(self, pmid: str) -> LookupResult:
        return await self.resolver.resolve_by_pmid(pmid)

    async def resolve_many(self, dois: Iterable[str]) -> Dict[str, LookupResult]:
        return await self.resolver.resolve_many(dois)

    async def search(self, query: str, limit: int = 20) -> List[ExternalPaperRecord]:
        return await self.search_service.search(query, limit=limit)

    async def search_detailed(self, query: str, limit: int = 20) -> KeywordSearchResult:
        return await self.search_service.search_detailed(query, limit=limit)

    async def close(self) -> None:
        """Drain background work, then release HTTP sessions and the database."""
        if self._resolver is not None:
            await self._resolver.close()
        elif self._sources is not None:
            for source in self._sources:
                await source.close()
        close_store = getattr(self._store, "close", None)
        if callable(close_store):
            close_store()
        self._resolver = None
        self._search_service = None
        self._sources = None
