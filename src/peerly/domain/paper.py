# src/peerly/domain/paper.py
"""
Paper metadata domain models.

Contains the data structures passed through DOI/PMID resolution:
- SourceName: Enum of upstream metadata sources (plus the local store)
- Author: Author sub-value, compared by display name
- PartialResult: What one source knows about one work
- ExternalPaperRecord: Reconciled accumulator built from partial results
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple


class SourceName(str, Enum):
    """Metadata sources, declared in merge priority order."""

    OPENALEX = "openalex"
    CROSSREF = "crossref"
    SEMANTIC_SCHOLAR = "semanticscholar"
    PUBMED = "pubmed"
    LOCAL = "local"


SOURCE_PRIORITY: Tuple[SourceName, ...] = (
    SourceName.OPENALEX,
    SourceName.CROSSREF,
    SourceName.SEMANTIC_SCHOLAR,
    SourceName.PUBMED,
    SourceName.LOCAL,
)

UNKNOWN_TITLE = "Unknown Title"

_CONFERENCE_MARKERS = ("conference", "proceedings")


def classify_venue(
    venue_name: Optional[str], *, explicit_conference: bool = False
) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(journal, conference)``; exactly one side is set for a named venue."""
    name = (venue_name or "").strip()
    if not name:
        return None, None
    lowered = name.lower()
    if explicit_conference or any(marker in lowered for marker in _CONFERENCE_MARKERS):
        return None, name
    return name, None


@dataclass(eq=False)
class Author:
    """Author of a work. ``name`` is derived as "given family" when absent."""

    given: Optional[str] = None
    family: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            joined = " ".join(part.strip() for part in (self.given, self.family) if part and part.strip())
            self.name = joined or None

    @property
    def display_name(self) -> str:
        return self.name or ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Author):
            return NotImplemented
        return self.display_name == other.display_name

    def __hash__(self) -> int:
        return hash(self.display_name)

    def __repr__(self) -> str:
        return f"Author({self.display_name!r})"


def normalize_authors(raw_authors: Optional[Iterable[Any]]) -> List[Author]:
    """Map heterogeneous author payloads (name / given+family variants) to Authors."""
    authors: List[Author] = []
    for raw in raw_authors or []:
        if isinstance(raw, Author):
            author = raw
        elif isinstance(raw, str):
            author = Author(name=raw.strip() or None)
        elif isinstance(raw, Mapping):
            if raw.get("name"):
                author = Author(name=str(raw["name"]).strip())
            else:
                given = raw.get("given") or raw.get("givenName") or raw.get("given_name")
                family = raw.get("family") or raw.get("familyName") or raw.get("family_name")
                author = Author(given=given, family=family)
                if not author.name and raw.get("display_name"):
                    author.name = str(raw["display_name"]).strip()
        else:
            continue
        if author.display_name:
            authors.append(author)
    return authors


@dataclass
class PartialResult:
    """
    Fields one source supplied for one work.

    Only the fields a source is authoritative for are set. ``abstract_inverted_index``
    is kept raw so the reconciler only rebuilds prose when it actually needs it.
    """

    source: SourceName
    doi: Optional[str] = None
    external_id: Optional[str] = None
    title: Optional[str] = None
    authors: List[Author] = field(default_factory=list)
    abstract: Optional[str] = None
    abstract_inverted_index: Optional[Dict[str, List[int]]] = None
    citation_count: Optional[int] = None
    citing_dois: Set[str] = field(default_factory=set)
    year: Optional[int] = None
    journal: Optional[str] = None
    conference: Optional[str] = None
    published_date: Optional[str] = None
    publisher: Optional[str] = None
    work_type: Optional[str] = None
    pdf_url: Optional[str] = None
    html_url: Optional[str] = None
    references_count: Optional[int] = None

    def has_data(self) -> bool:
        """Whether this source supplied at least one mergeable field."""
        return any(
            (
                self.title,
                self.authors,
                self.abstract,
                self.abstract_inverted_index is not None,
                self.citation_count is not None,
                self.citing_dois,
                self.year is not None,
                self.journal,
                self.conference,
                self.published_date,
                self.publisher,
                self.work_type,
                self.pdf_url,
                self.html_url,
                self.references_count is not None,
            )
        )


@dataclass
class ExternalPaperRecord:
    """Reconciled metadata for one DOI (or a ``pmid:<n>`` placeholder)."""

    doi: str
    title: Optional[str] = None
    authors: Optional[List[Author]] = None
    abstract: Optional[str] = None
    citation_count: Optional[int] = None
    citing_dois: Optional[Set[str]] = None
    year: Optional[int] = None
    journal: Optional[str] = None
    conference: Optional[str] = None
    published_date: Optional[str] = None
    publisher: Optional[str] = None
    work_type: Optional[str] = None
    pdf_url: Optional[str] = None
    html_url: Optional[str] = None
    references_count: Optional[int] = None
    sources: Set[SourceName] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.sources

    def author_names(self) -> List[str]:
        return [a.display_name for a in self.authors or [] if a.display_name.strip()]

    def ordered_sources(self) -> List[str]:
        return [s.value for s in SOURCE_PRIORITY if s in self.sources]

    def to_dict(self) -> Dict[str, Any]:
        """Display form: authors as strings, sources in priority order."""
        return record_to_display_dict(self)


def record_to_paper_fields(record: ExternalPaperRecord) -> Dict[str, Any]:
    """Fields handed to the Paper Store for an upsert keyed by ``record.doi``."""
    return {
        "title": record.title or UNKNOWN_TITLE,
        "abstract": record.abstract or None,
        "authors": record.author_names(),
        "year": record.year,
        "journal": record.journal,
        "conference": record.conference,
        "published_date": record.published_date,
        "publisher": record.publisher,
        "work_type": record.work_type,
        "pdf_url": record.pdf_url,
        "html_url": record.html_url,
        "citation_count": record.citation_count,
        "references_count": record.references_count,
        "citing_dois": sorted(record.citing_dois) if record.citing_dois else [],
        "sources": record.ordered_sources(),
    }


def record_to_display_dict(record: ExternalPaperRecord) -> Dict[str, Any]:
    return {
        "doi": record.doi,
        "title": record.title,
        "authors": record.author_names() if record.authors is not None else None,
        "abstract": record.abstract,
        "citation_count": record.citation_count,
        "citing_dois": sorted(record.citing_dois) if record.citing_dois is not None else None,
        "year": record.year,
        "journal": record.journal,
        "conference": record.conference,
        "published_date": record.published_date,
        "publisher": record.publisher,
        "type": record.work_type,
        "pdf_url": record.pdf_url,
        "html_url": record.html_url,
        "references_count": record.references_count,
        "sources": record.ordered_sources(),
    }


def _source_names(values: Iterable[Any]) -> Set[SourceName]:
    names: Set[SourceName] = set()
    for value in values or []:
        try:
            names.add(SourceName(str(value)))
        except ValueError:
            continue
    return names


def paper_row_to_record(row: Mapping[str, Any]) -> ExternalPaperRecord:
    """Rebuild a record from a stored paper row (store dict form)."""
    authors = normalize_authors(row.get("authors") or [])
    citing = row.get("citing_dois") or []
    return ExternalPaperRecord(
        doi=str(row.get("doi") or ""),
        title=row.get("title") or None,
        authors=authors or None,
        abstract=row.get("abstract") or None,
        citation_count=row.get("citation_count"),
        citing_dois=set(citing) if citing else None,
        year=row.get("year"),
        journal=row.get("journal") or None,
        conference=row.get("conference") or None,
        published_date=row.get("published_date") or None,
        publisher=row.get("publisher") or None,
        work_type=row.get("work_type") or None,
        pdf_url=row.get("pdf_url") or None,
        html_url=row.get("html_url") or None,
        references_count=row.get("references_count"),
        sources=_source_names(row.get("sources") or []),
    )
