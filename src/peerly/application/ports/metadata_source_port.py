# src/peerly/application/ports/metadata_source_port.py
"""
Metadata source port interface.

Every bibliographic source (OpenAlex, CrossRef, Semantic Scholar) implements this
contract. Sources raise on transport failure; isolating failures per source is the
fetcher's job, not theirs.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from peerly.domain.paper import PartialResult, SourceName


@runtime_checkable
class MetadataSourcePort(Protocol):
    """Abstract interface for a DOI metadata source."""

    @property
    def source(self) -> SourceName:
        """Return the source identifier."""
        ...

    async def lookup_doi(self, doi: str) -> Optional[PartialResult]:
        """
        Fetch metadata for one canonical DOI.

        Returns:
            PartialResult with the fields this source owns, or None when the
            source has no record for the DOI (HTTP 404 / empty payload).

        Raises:
            APIError: on network failure, non-2xx status or malformed JSON.
            RateLimitedError: on HTTP 429.
        """
        ...

    async def search(self, query: str, *, limit: int = 20) -> List[PartialResult]:
        """Keyword search using the source's native query syntax."""
        ...

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""
        ...


@runtime_checkable
class CitingWorksPort(Protocol):
    """Optional capability: list DOIs of works citing a given DOI."""

    async def citing_dois(
        self, doi: str, *, work_id: Optional[str] = None, limit: int = 200
    ) -> List[str]: ...
