"""Persistence boundary for resolved papers."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable


class PaperStoreError(Exception):
    """Raised when the Paper Store cannot complete a write."""


class DuplicatePaperError(PaperStoreError):
    """Insert lost a unique-key race on ``doi``; the row already exists."""

    def __init__(self, doi: str):
        super().__init__(f"paper already exists: {doi}")
        self.doi = doi


@runtime_checkable
class PaperStorePort(Protocol):
    """Abstract interface for the paper store (rows are plain dicts)."""

    def get_paper_by_doi(self, doi: str) -> Optional[Dict[str, Any]]: ...

    def upsert_paper(self, doi: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...

    def update_paper(self, doi: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...

    def search_papers(
        self, conditions: Sequence[Tuple[str, str]], *, limit: int = 20
    ) -> List[Dict[str, Any]]: ...
