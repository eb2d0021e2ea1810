# src/peerly/application/services/metadata_fetcher.py
"""
Multi-source metadata fetcher.

Fans one DOI out to every configured source concurrently. Settle-all semantics:
each source either yields a PartialResult or an outcome describing why it did not,
and no source failure can cancel or fail the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from peerly.application.ports.metadata_source_port import MetadataSourcePort
from peerly.domain.paper import SOURCE_PRIORITY, PartialResult, SourceName
from peerly.infrastructure.api_clients.base import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class SourceOutcome:
    """What one source did for one DOI batch."""

    source: SourceName
    partial: Optional[PartialResult] = None
    error: Optional[str] = None
    rate_limited: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def contributed(self) -> bool:
        return self.partial is not None and self.partial.has_data()


def _priority(source: SourceName) -> int:
    try:
        return SOURCE_PRIORITY.index(source)
    except ValueError:
        return len(SOURCE_PRIORITY)


class MetadataFetcher:
    """Concurrent DOI lookup across sources, results returned in priority order."""

    def __init__(self, sources: Sequence[MetadataSourcePort]):
        # stable sort keeps declaration order among equal priorities
        self._sources: List[MetadataSourcePort] = sorted(sources, key=lambda s: _priority(s.source))

    @property
    def sources(self) -> List[MetadataSourcePort]:
        return list(self._sources)

    async def fetch_all(self, doi: str) -> List[SourceOutcome]:
        if not self._sources:
            return []

        results = await asyncio.gather(
            *(source.lookup_doi(doi) for source in self._sources),
            return_exceptions=True,
        )

        outcomes: List[SourceOutcome] = []
        for source, result in zip(self._sources, results):
            name = source.source
            if isinstance(result, RateLimitedError):
                logger.warning("Source %s rate limited for %s", name.value, doi)
                outcomes.append(SourceOutcome(source=name, error=str(result), rate_limited=True))
            elif isinstance(result, asyncio.CancelledError):
                raise result
            elif isinstance(result, BaseException):
                logger.warning("Source %s failed for %s: %s", name.value, doi, result)
                outcomes.append(SourceOutcome(source=name, error=str(result) or type(result).__name__))
            else:
                outcomes.append(SourceOutcome(source=name, partial=result))

        failed = [o.source.value for o in outcomes if not o.ok]
        if failed:
            logger.info(
                "Lookup degraded for %s: %d/%d sources failed (%s)",
                doi,
                len(failed),
                len(outcomes),
                ", ".join(failed),
            )
        return outcomes


def partials_of(outcomes: Sequence[SourceOutcome]) -> List[PartialResult]:
    return [o.partial for o in outcomes if o.partial is not None]


def any_rate_limited(outcomes: Sequence[SourceOutcome]) -> bool:
    return any(o.rate_limited for o in outcomes)
