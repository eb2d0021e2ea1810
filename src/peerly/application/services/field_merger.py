# src/peerly/application/services/field_merger.py
"""
Field-merge reconciler.

Partials are applied in fixed source priority. For every field the first non-empty
value wins; later sources only fill gaps. Counts are never summed. Every source that
supplied any field is recorded in ``sources`` even when all of its values lost.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from peerly.domain.abstract import reconstruct_abstract
from peerly.domain.paper import SOURCE_PRIORITY, ExternalPaperRecord, PartialResult, SourceName

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "title",
    "year",
    "journal",
    "conference",
    "published_date",
    "publisher",
    "work_type",
    "pdf_url",
    "html_url",
)
_COUNT_FIELDS = ("citation_count", "references_count")


def _is_empty(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _priority(source: SourceName) -> int:
    try:
        return SOURCE_PRIORITY.index(source)
    except ValueError:
        return len(SOURCE_PRIORITY)


class FieldMerger:
    """First-non-empty-wins reconciliation of PartialResults."""

    def merge(self, doi: str, partials: Iterable[Optional[PartialResult]]) -> ExternalPaperRecord:
        record = ExternalPaperRecord(doi=doi)
        ordered: List[PartialResult] = sorted(
            (p for p in partials if p is not None), key=lambda p: _priority(p.source)
        )
        for partial in ordered:
            self.merge_into(record, partial)
        return record

    def merge_into(self, record: ExternalPaperRecord, partial: PartialResult) -> ExternalPaperRecord:
        """Apply one partial to ``record`` in place."""
        if not partial.has_data():
            return record

        for name in _SCALAR_FIELDS:
            value = getattr(partial, name)
            if _is_empty(getattr(record, name)) and not _is_empty(value):
                setattr(record, name, value.strip() if isinstance(value, str) else value)

        for name in _COUNT_FIELDS:
            if getattr(record, name) is None and getattr(partial, name) is not None:
                setattr(record, name, getattr(partial, name))

        if not record.authors and partial.authors:
            record.authors = list(partial.authors)

        if _is_empty(record.abstract):
            # only rebuild from the inverted index when prose is actually needed
            abstract = partial.abstract
            if _is_empty(abstract) and partial.abstract_inverted_index is not None:
                abstract = reconstruct_abstract(partial.abstract_inverted_index)
            if not _is_empty(abstract):
                record.abstract = abstract.strip()

        if not record.citing_dois and partial.citing_dois:
            record.citing_dois = set(partial.citing_dois)

        record.sources.add(partial.source)
        return record
