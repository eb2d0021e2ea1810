# src/peerly/infrastructure/sources/openalex_source.py
"""
OpenAlex metadata source.

Primary source: title, authors, inverted-index abstract, citation count, venue.
API documentation: https://docs.openalex.org/
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from peerly.domain.abstract import coerce_inverted_index
from peerly.domain.paper import PartialResult, SourceName, classify_venue, normalize_authors
from peerly.infrastructure.api_clients.base import APIClient, polite_user_agent
from peerly.infrastructure.sources._parsing import as_int, as_str, doi_or_none, doi_path, doi_set

logger = logging.getLogger(__name__)


class OpenAlexSource:
    """
    OpenAlex DOI lookup, keyword search and citing-works listing.

    API: https://api.openalex.org/works
    Rate limit: 10 req/s (polite pool with email), 100K/day
    """

    OPENALEX_API_URL = "https://api.openalex.org"
    CITING_PAGE_SIZE = 200

    def __init__(
        self,
        client: Optional[APIClient] = None,
        email: Optional[str] = None,
        timeout: float = 30,
    ):
        self.email = email  # For polite pool
        self.client = client or APIClient(
            self.OPENALEX_API_URL,
            timeout=timeout,
            user_agent=polite_user_agent(email),
        )

    @property
    def source(self) -> SourceName:
        return SourceName.OPENALEX

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(extra)
        if self.email:
            params["mailto"] = self.email
        return params

    async def lookup_doi(self, doi: str) -> Optional[PartialResult]:
        data = await self.client.get(f"works/doi:{doi_path(doi)}", params=self._params() or None)
        if not data:
            return None
        return self._to_partial(data)

    async def search(self, query: str, *, limit: int = 20) -> List[PartialResult]:
        params = self._params(search=query, **{"per-page": max(1, min(limit, 200))})
        data = await self.client.get("works", params=params)
        results = (data or {}).get("results") or []
        partials = [self._to_partial(r) for r in results if isinstance(r, dict)]
        logger.info(f"OpenAlex found {len(partials)} works for query: {query}")
        return partials

    async def citing_dois(
        self, doi: str, *, work_id: Optional[str] = None, limit: int = CITING_PAGE_SIZE
    ) -> List[str]:
        """DOIs of works citing ``doi``; resolves the OpenAlex work id when not given."""
        if not work_id:
            work = await self.client.get(f"works/doi:{doi_path(doi)}", params=self._params(select="id"))
            work_id = self._short_id((work or {}).get("id"))
        if not work_id:
            return []
        params = self._params(
            filter=f"cites:{work_id}",
            select="doi",
            **{"per-page": max(1, min(limit, 200))},
        )
        data = await self.client.get("works", params=params)
        results = (data or {}).get("results") or []
        return sorted(doi_set(r.get("doi") for r in results if isinstance(r, dict)))

    @staticmethod
    def _short_id(raw: Any) -> Optional[str]:
        text = as_str(raw)
        if not text:
            return None
        return text.replace("https://openalex.org/", "")

    def _to_partial(self, data: Dict[str, Any]) -> PartialResult:
        """Convert an OpenAlex work to a PartialResult."""
        authors = normalize_authors(
            {"name": (a.get("author") or {}).get("display_name")}
            for a in data.get("authorships") or []
            if isinstance(a, dict)
        )

        primary = data.get("primary_location") or {}
        venue = primary.get("source") or {}
        journal, conference = classify_venue(
            venue.get("display_name"),
            explicit_conference=venue.get("type") == "conference",
        )

        best_oa = data.get("best_oa_location") or {}
        pdf_url = (
            as_str(primary.get("pdf_url"))
            or as_str(best_oa.get("pdf_url"))
            or as_str((data.get("open_access") or {}).get("oa_url"))
        )

        references_count = as_int(data.get("referenced_works_count"))
        if references_count is None and isinstance(data.get("referenced_works"), list):
            references_count = len(data["referenced_works"])

        return PartialResult(
            source=SourceName.OPENALEX,
            doi=doi_or_none(data.get("doi")),
            external_id=self._short_id(data.get("id")),
            title=as_str(data.get("title")) or as_str(data.get("display_name")),
            authors=authors,
            abstract_inverted_index=coerce_inverted_index(data.get("abstract_inverted_index")),
            citation_count=as_int(data.get("cited_by_count")),
            year=as_int(data.get("publication_year")),
            journal=journal,
            conference=conference,
            published_date=as_str(data.get("publication_date")),
            publisher=as_str(data.get("publisher")) or as_str(venue.get("host_organization_name")),
            work_type=as_str(data.get("type")),
            pdf_url=pdf_url,
            html_url=as_str(primary.get("landing_page_url")),
            references_count=references_count,
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        await self.client.close()
