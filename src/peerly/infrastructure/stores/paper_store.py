from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import String, cast, desc, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from peerly.application.ports.paper_store_port import DuplicatePaperError, PaperStoreError
from peerly.domain.doi import normalize
from peerly.infrastructure.stores.models import Base, PaperModel
from peerly.infrastructure.stores.sqlalchemy_db import SessionProvider, get_db_url
from peerly.utils.logging_config import LogFiles, Logger

_SCALAR_COLUMNS = (
    "title",
    "abstract",
    "year",
    "journal",
    "conference",
    "published_date",
    "publisher",
    "work_type",
    "pdf_url",
    "html_url",
    "citation_count",
    "references_count",
)

_SEARCH_COLUMNS = {
    "title": PaperModel.title,
    "abstract": PaperModel.abstract,
    "journal": PaperModel.journal,
    "conference": PaperModel.conference,
    "author": PaperModel.authors_json,
    "year": cast(PaperModel.year, String),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _safe_list(values: Any) -> List[str]:
    if not isinstance(values, (list, tuple, set)):
        return []
    return [str(v).strip() for v in values if str(v).strip()]


def _key(doi: str) -> str:
    # pmid placeholders are stored verbatim
    text = (doi or "").strip()
    return text if text.startswith("pmid:") else normalize(text)


class PaperStore:
    """
    Paper storage keyed by DOI.

    Handles:
    - Lookup by DOI / id
    - Insert-or-update by DOI, with unique-key races surfaced as DuplicatePaperError
    - Case-insensitive substring search over title/abstract/venue/authors/year
    """

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self.db_url = db_url or get_db_url()
        self._provider = SessionProvider(self.db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    # --- reads ---

    def get_paper_by_doi(self, doi: str) -> Optional[Dict[str, Any]]:
        key = _key(doi)
        if not key:
            return None
        try:
            with self._provider.session() as session:
                row = session.execute(
                    select(PaperModel).where(PaperModel.doi == key)
                ).scalar_one_or_none()
                return self._paper_to_dict(row) if row is not None else None
        except SQLAlchemyError as exc:
            Logger.error(f"Lookup failed for {key}: {exc}", file=LogFiles.ERROR)
            raise PaperStoreError(str(exc)) from exc

    def get_paper_by_id(self, paper_id: int) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(PaperModel, int(paper_id))
            return self._paper_to_dict(row) if row is not None else None

    def search_papers(
        self, conditions: Sequence[Tuple[str, str]], *, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """OR of case-insensitive substring matches; unknown columns are ignored."""
        clauses = []
        for column, term in conditions:
            target = _SEARCH_COLUMNS.get(column)
            text = (term or "").strip().lower()
            if target is None or not text:
                continue
            clauses.append(func.lower(target).contains(text, autoescape=True))
        if not clauses:
            return []

        stmt = (
            select(PaperModel)
            .where(or_(*clauses))
            .order_by(desc(func.coalesce(PaperModel.citation_count, 0)), PaperModel.id)
            .limit(max(1, int(limit)))
        )
        try:
            with self._provider.session() as session:
                rows = session.execute(stmt).scalars().all()
                papers = [self._paper_to_dict(r) for r in rows]
        except SQLAlchemyError as exc:
            Logger.error(f"Search failed: {exc}", file=LogFiles.ERROR)
            raise PaperStoreError(str(exc)) from exc
        Logger.info(f"Store search matched {len(papers)} papers", file=LogFiles.STORE)
        return papers

    def count_papers(self) -> int:
        with self._provider.session() as session:
            return int(session.execute(select(func.count()).select_from(PaperModel)).scalar() or 0)

    # --- writes ---

    def upsert_paper(self, doi: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a paper, or update it when the DOI already exists.

        Raises:
            DuplicatePaperError: a concurrent insert won the unique-key race.
            PaperStoreError: any other database failure.
        """
        key = _key(doi)
        if not key:
            raise PaperStoreError("cannot store a paper without a DOI")
        now = _utcnow()
        with self._provider.session() as session:
            try:
                row = session.execute(select(PaperModel).where(PaperModel.doi == key)).scalar_one_or_none()
                created = row is None
                if created:
                    row = PaperModel(doi=key, created_at=now)
                    session.add(row)
                self._apply_fields(row, fields)
                row.updated_at = now
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                Logger.warning(f"Duplicate insert for {key}", file=LogFiles.STORE)
                raise DuplicatePaperError(key) from exc
            except SQLAlchemyError as exc:
                session.rollback()
                Logger.error(f"Upsert failed for {key}: {exc}", file=LogFiles.ERROR)
                raise PaperStoreError(str(exc)) from exc
            Logger.info(f"{'Inserted' if created else 'Updated'} paper {key}", file=LogFiles.STORE)
            return self._paper_to_dict(row)

    def update_paper(self, doi: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Update only the given fields of an existing paper."""
        key = _key(doi)
        with self._provider.session() as session:
            try:
                row = session.execute(select(PaperModel).where(PaperModel.doi == key)).scalar_one_or_none()
                if row is None:
                    raise PaperStoreError(f"paper not found: {key}")
                self._apply_fields(row, fields)
                row.updated_at = _utcnow()
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                Logger.error(f"Update failed for {key}: {exc}", file=LogFiles.ERROR)
                raise PaperStoreError(str(exc)) from exc
            return self._paper_to_dict(row)

    @staticmethod
    def _apply_fields(row: PaperModel, fields: Dict[str, Any]) -> None:
        for name in _SCALAR_COLUMNS:
            if name in fields:
                setattr(row, name, fields[name])
        if not row.title:
            row.title = ""
        if "authors" in fields:
            row.set_authors(_safe_list(fields["authors"]))
        if "citing_dois" in fields:
            row.set_citing_dois(_safe_list(fields["citing_dois"]))
        if "sources" in fields:
            row.set_sources(_safe_list(fields["sources"]))

    @staticmethod
    def _paper_to_dict(row: PaperModel) -> Dict[str, Any]:
        return {
            "id": int(row.id),
            "doi": row.doi,
            "title": row.title,
            "authors": row.get_authors(),
            "abstract": row.abstract,
            "year": row.year,
            "journal": row.journal,
            "conference": row.conference,
            "published_date": row.published_date,
            "publisher": row.publisher,
            "work_type": row.work_type,
            "pdf_url": row.pdf_url,
            "html_url": row.html_url,
            "citation_count": row.citation_count,
            "references_count": row.references_count,
            "citing_dois": row.get_citing_dois(),
            "sources": row.get_sources(),
            "created_at": row.created_at.isoformat() if row.created_at else None,
            "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        }

    def close(self) -> None:
        """Close database connections."""
        self._provider.engine.dispose()
