# src/peerly/infrastructure/sources/pubmed_client.py
"""
PMID -> DOI conversion via NCBI E-utilities ``esummary``.

DOI extraction order:
1. ``articleids`` entry whose ``idtype`` is ``doi``
2. free-text ``elocationid`` (e.g. "pii: ehaf673. doi: 10.1093/eurheartj/ehaf673")

When no DOI exists, a partial record keyed ``pmid:<pmid>`` is built from the summary.
That placeholder is not a DOI and must never be fed back into DOI validation.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from peerly.domain.paper import ExternalPaperRecord, SourceName, normalize_authors
from peerly.infrastructure.api_clients.base import APIClient, APIError, polite_user_agent
from peerly.infrastructure.sources._parsing import as_str, doi_or_none, year_from_text

logger = logging.getLogger(__name__)

_PMID_RE = re.compile(r"^\d+$")
_ELOCATION_DOI_RE = re.compile(r"10\.\d{4,}\S*")

PMID_PREFIX = "pmid:"


def is_valid_pmid(pmid: Optional[str]) -> bool:
    return bool(_PMID_RE.match((pmid or "").strip()))


def placeholder_id(pmid: str) -> str:
    return f"{PMID_PREFIX}{pmid.strip()}"


def extract_doi(summary: Dict[str, Any]) -> Optional[str]:
    """Pull a canonical DOI out of one esummary record, or None."""
    for article_id in summary.get("articleids") or []:
        if not isinstance(article_id, dict):
            continue
        if str(article_id.get("idtype", "")).lower() == "doi":
            doi = doi_or_none(article_id.get("value"))
            if doi:
                return doi

    elocation = as_str(summary.get("elocationid")) or as_str(summary.get("doi")) or ""
    match = _ELOCATION_DOI_RE.search(elocation)
    if match:
        return doi_or_none(match.group(0).rstrip(".;,"))
    return None


def summary_to_record(pmid: str, summary: Dict[str, Any]) -> Optional[ExternalPaperRecord]:
    """Partial record from title/authors/pubdate/journal; None if nothing usable."""
    title = as_str(summary.get("title"))
    authors = normalize_authors(
        {"name": a.get("name")} for a in summary.get("authors") or [] if isinstance(a, dict)
    )
    year = year_from_text(as_str(summary.get("pubdate")))
    journal = as_str(summary.get("fulljournalname")) or as_str(summary.get("source"))
    if not (title or authors or year or journal):
        return None
    return ExternalPaperRecord(
        doi=placeholder_id(pmid),
        title=title,
        authors=authors or None,
        year=year,
        journal=journal,
        published_date=as_str(summary.get("sortpubdate")),
        sources={SourceName.PUBMED},
    )


class PubMedClient:
    """
    NCBI esummary client.

    API: https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi
    Rate limit: 3 req/s without key, 10 req/s with key
    """

    EUTILS_API_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
    TOOL_NAME = "peerly"

    def __init__(
        self,
        client: Optional[APIClient] = None,
        email: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30,
    ):
        self.email = email
        self.api_key = api_key
        self.client = client or APIClient(
            self.EUTILS_API_URL,
            timeout=timeout,
            user_agent=polite_user_agent(email),
        )

    @property
    def source(self) -> SourceName:
        return SourceName.PUBMED

    async def fetch_summary(self, pmid: str) -> Optional[Dict[str, Any]]:
        """The esummary record for ``pmid``; raises APIError on transport failure."""
        pmid = pmid.strip()
        params: Dict[str, Any] = {
            "db": "pubmed",
            "retmode": "json",
            "id": pmid,
            "tool": self.TOOL_NAME,
        }
        if self.email:
            params["email"] = self.email
        if self.api_key:
            params["api_key"] = self.api_key

        data = await self.client.get("esummary.fcgi", params=params)
        result = data.get("result") if isinstance(data, dict) else None
        record = result.get(pmid) if isinstance(result, dict) else None
        if not isinstance(record, dict) or record.get("error"):
            return None
        return record

    async def pmid_to_doi(self, pmid: str) -> Optional[str]:
        """DOI for ``pmid``; None for bad input, missing record or transport failure."""
        if not is_valid_pmid(pmid):
            return None
        try:
            summary = await self.fetch_summary(pmid)
        except APIError as exc:
            logger.warning(f"PubMed lookup failed for PMID {pmid}: {exc}")
            return None
        return extract_doi(summary) if summary else None

    async def pmid_to_partial_record(self, pmid: str) -> Optional[ExternalPaperRecord]:
        if not is_valid_pmid(pmid):
            return None
        try:
            summary = await self.fetch_summary(pmid)
        except APIError as exc:
            logger.warning(f"PubMed lookup failed for PMID {pmid}: {exc}")
            return None
        return summary_to_record(pmid, summary) if summary else None

    async def close(self) -> None:
        await self.client.close()
