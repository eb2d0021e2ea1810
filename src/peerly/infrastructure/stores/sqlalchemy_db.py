from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from peerly.config import DEFAULT_DB_URL


def get_db_url() -> str:
    return os.getenv("PEERLY_DB_URL", "").strip() or DEFAULT_DB_URL


def _ensure_sqlite_dir(db_url: str) -> None:
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return
    database = url.database or ""
    if database and database != ":memory:" and not database.startswith("file:"):
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


class SessionProvider:
    """Owns the engine and hands out short-lived sessions."""

    def __init__(self, db_url: Optional[str] = None):
        self.db_url = db_url or get_db_url()
        connect_args = {}
        if self.db_url.startswith("sqlite"):
            _ensure_sqlite_dir(self.db_url)
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(self.db_url, future=True, connect_args=connect_args)
        self._factory = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def session(self) -> Session:
        return self._factory()
