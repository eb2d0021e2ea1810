from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _load_list(raw: Optional[str]) -> list:
    try:
        value = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


class PaperModel(Base):
    """Resolved paper metadata, keyed by canonical DOI (or a ``pmid:<n>`` placeholder)."""

    __tablename__ = "papers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doi: Mapped[str] = mapped_column(String(256), unique=True, index=True)

    title: Mapped[str] = mapped_column(Text, default="")
    abstract: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    authors_json: Mapped[str] = mapped_column(Text, default="[]")
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    journal: Mapped[Optional[str]] = mapped_column(String(512), nullable=True, index=True)
    conference: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    published_date: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    publisher: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    work_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    pdf_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    html_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # null means "unknown", not zero
    citation_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    references_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    citing_dois_json: Mapped[str] = mapped_column(Text, default="[]")

    sources_json: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def get_authors(self) -> list:
        return _load_list(self.authors_json)

    def set_authors(self, authors: list) -> None:
        self.authors_json = json.dumps(authors or [], ensure_ascii=False)

    def get_citing_dois(self) -> list:
        return _load_list(self.citing_dois_json)

    def set_citing_dois(self, dois: list) -> None:
        self.citing_dois_json = json.dumps(sorted(set(dois or [])), ensure_ascii=False)

    def get_sources(self) -> list:
        return _load_list(self.sources_json)

    def set_sources(self, sources: list) -> None:
        self.sources_json = json.dumps(sources or [], ensure_ascii=False)
