# src/peerly/infrastructure/sources/crossref_source.py
"""
CrossRef metadata source.

Secondary bibliographic source. Abstracts arrive as JATS XML fragments and are
flattened to plain text here.
API documentation: https://api.crossref.org/swagger-ui/index.html
"""

from __future__ import annotations

import html
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from peerly.domain.paper import PartialResult, SourceName, classify_venue, normalize_authors
from peerly.infrastructure.api_clients.base import APIClient, polite_user_agent
from peerly.infrastructure.sources._parsing import as_int, as_str, doi_or_none, doi_path, first_str

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

_PDF_CONTENT_TYPES = ("application/pdf", "unspecified")


def strip_jats(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    plain = _WS_RE.sub(" ", html.unescape(_TAG_RE.sub(" ", text))).strip()
    # JATS abstracts usually open with a bare "Abstract" title element
    if plain.lower().startswith("abstract "):
        plain = plain[len("abstract "):].lstrip()
    return plain or None


def _date_parts(message: Dict[str, Any]) -> Tuple[Optional[int], Optional[str]]:
    for key in ("published", "published-print", "published-online", "issued"):
        parts = ((message.get(key) or {}).get("date-parts") or [[]])[0] or []
        if parts and as_int(parts[0]) is not None:
            year = parts[0]
            month = parts[1] if len(parts) > 1 and as_int(parts[1]) else 1
            day = parts[2] if len(parts) > 2 and as_int(parts[2]) else 1
            return year, f"{year:04d}-{month:02d}-{day:02d}"
    return None, None


class CrossRefSource:
    """
    CrossRef DOI lookup and keyword search.

    API: https://api.crossref.org/works
    Rate limit: polite pool when the User-Agent carries a mailto
    """

    CROSSREF_API_URL = "https://api.crossref.org"

    def __init__(
        self,
        client: Optional[APIClient] = None,
        email: Optional[str] = None,
        timeout: float = 30,
    ):
        self.email = email
        self.client = client or APIClient(
            self.CROSSREF_API_URL,
            timeout=timeout,
            user_agent=polite_user_agent(email),
        )

    @property
    def source(self) -> SourceName:
        return SourceName.CROSSREF

    async def lookup_doi(self, doi: str) -> Optional[PartialResult]:
        data = await self.client.get(f"works/{doi_path(doi)}")
        message = (data or {}).get("message")
        if not isinstance(message, dict):
            return None
        return self._to_partial(message)

    async def search(self, query: str, *, limit: int = 20) -> List[PartialResult]:
        params = {"query": query, "rows": max(1, min(limit, 100))}
        data = await self.client.get("works", params=params)
        items = ((data or {}).get("message") or {}).get("items") or []
        partials = [self._to_partial(item) for item in items if isinstance(item, dict)]
        logger.info(f"CrossRef found {len(partials)} works for query: {query}")
        return partials

    def _to_partial(self, message: Dict[str, Any]) -> PartialResult:
        """Convert a CrossRef ``message`` object to a PartialResult."""
        work_type = as_str(message.get("type"))
        journal, conference = classify_venue(
            first_str(message.get("container-title")),
            explicit_conference=work_type == "proceedings-article",
        )
        year, published_date = _date_parts(message)

        pdf_url: Optional[str] = None
        html_url: Optional[str] = None
        for link in message.get("link") or []:
            if not isinstance(link, dict) or not as_str(link.get("URL")):
                continue
            content_type = link.get("content-type")
            if content_type in _PDF_CONTENT_TYPES:
                pdf_url = link["URL"]
            elif content_type == "text/html":
                html_url = link["URL"]

        doi = doi_or_none(message.get("DOI"))
        return PartialResult(
            source=SourceName.CROSSREF,
            doi=doi,
            external_id=doi,
            title=first_str(message.get("title")),
            authors=normalize_authors(a for a in message.get("author") or [] if isinstance(a, dict)),
            abstract=strip_jats(as_str(message.get("abstract"))),
            citation_count=as_int(message.get("is-referenced-by-count")),
            year=year,
            journal=journal,
            conference=conference,
            published_date=published_date,
            publisher=as_str(message.get("publisher")),
            work_type=work_type,
            pdf_url=pdf_url,
            html_url=html_url,
            references_count=as_int(message.get("references-count")),
        )

    async def close(self) -> None:
        await self.client.close()
