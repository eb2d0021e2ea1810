# src/peerly/infrastructure/sources/semantic_scholar_source.py
"""
Semantic Scholar metadata source.

Citation-graph source: also supplies DOIs of citing works.
API documentation: https://api.semanticscholar.org/api-docs/
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from peerly.domain.paper import PartialResult, SourceName, classify_venue, normalize_authors
from peerly.infrastructure.api_clients.base import APIClient, polite_user_agent
from peerly.infrastructure.sources._parsing import as_int, as_str, doi_or_none, doi_path, doi_set

logger = logging.getLogger(__name__)


class SemanticScholarSource:
    """
    Semantic Scholar DOI lookup and keyword search.

    API: https://api.semanticscholar.org/graph/v1/paper
    Rate limit: 100 req/min (with API key), 5000/day without key
    """

    S2_API_URL = "https://api.semanticscholar.org/graph/v1"

    FIELDS = [
        "paperId",
        "externalIds",
        "title",
        "abstract",
        "authors.name",
        "citationCount",
        "referenceCount",
        "year",
        "venue",
        "publicationVenue",
        "publicationDate",
        "publicationTypes",
        "url",
        "openAccessPdf",
    ]
    LOOKUP_FIELDS = FIELDS + ["citations.externalIds"]

    def __init__(
        self,
        client: Optional[APIClient] = None,
        api_key: Optional[str] = None,
        email: Optional[str] = None,
        timeout: float = 30,
    ):
        self.client = client or APIClient(
            self.S2_API_URL,
            api_key=api_key,
            timeout=timeout,
            user_agent=polite_user_agent(email),
        )

    @property
    def source(self) -> SourceName:
        return SourceName.SEMANTIC_SCHOLAR

    async def lookup_doi(self, doi: str) -> Optional[PartialResult]:
        data = await self.client.get(
            f"paper/DOI:{doi_path(doi)}",
            params={"fields": ",".join(self.LOOKUP_FIELDS)},
        )
        if not data:
            return None
        return self._to_partial(data)

    async def search(self, query: str, *, limit: int = 20) -> List[PartialResult]:
        params = {
            "query": query,
            "limit": max(1, min(limit, 100)),
            "fields": ",".join(self.FIELDS),
        }
        data = await self.client.get("paper/search", params=params)
        items = (data or {}).get("data") or []
        partials = [self._to_partial(item) for item in items if isinstance(item, dict)]
        logger.info(f"Semantic Scholar found {len(partials)} papers for query: {query}")
        return partials

    def _to_partial(self, data: Dict[str, Any]) -> PartialResult:
        """Convert a Semantic Scholar paper to a PartialResult."""
        external_ids = data.get("externalIds") or {}
        publication_venue = data.get("publicationVenue") or {}
        venue_name = as_str(data.get("venue")) or as_str(publication_venue.get("name"))
        publication_types = data.get("publicationTypes") or []
        journal, conference = classify_venue(
            venue_name,
            explicit_conference=(
                publication_venue.get("type") == "conference" or "Conference" in publication_types
            ),
        )

        citing = doi_set(
            (c.get("externalIds") or {}).get("DOI")
            for c in data.get("citations") or []
            if isinstance(c, dict)
        )

        return PartialResult(
            source=SourceName.SEMANTIC_SCHOLAR,
            doi=doi_or_none(external_ids.get("DOI")),
            external_id=as_str(data.get("paperId")),
            title=as_str(data.get("title")),
            authors=normalize_authors(a for a in data.get("authors") or [] if isinstance(a, dict)),
            abstract=as_str(data.get("abstract")),
            citation_count=as_int(data.get("citationCount")),
            citing_dois=citing,
            year=as_int(data.get("year")),
            journal=journal,
            conference=conference,
            published_date=as_str(data.get("publicationDate")),
            html_url=as_str(data.get("url")),
            pdf_url=as_str((data.get("openAccessPdf") or {}).get("url")),
            references_count=as_int(data.get("referenceCount")),
        )

    async def close(self) -> None:
        await self.client.close()
