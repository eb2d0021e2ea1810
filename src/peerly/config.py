# src/peerly/config.py
"""Environment-driven settings. Malformed numbers fall back to their defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite:///data/peerly.db"
DEFAULT_CONTACT_EMAIL = "contact@example.com"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default
    return value if value >= 0 else default


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default
    return value if value >= minimum else default


def _env_str(name: str) -> Optional[str]:
    return os.getenv(name, "").strip() or None


@dataclass(frozen=True)
class PeerlySettings:
    db_url: str = DEFAULT_DB_URL
    contact_email: str = DEFAULT_CONTACT_EMAIL
    s2_api_key: Optional[str] = None
    ncbi_api_key: Optional[str] = None
    min_global_interval: float = 2.5
    per_doi_cooldown: float = 45.0
    rate_limit_penalty: float = 10.0
    first_lookup_delay: float = 0.1
    cooldown_ledger_size: int = 10_000
    http_timeout: float = 30.0
    search_local_threshold: int = 5

    @classmethod
    def from_env(cls) -> "PeerlySettings":
        return cls(
            db_url=_env_str("PEERLY_DB_URL") or DEFAULT_DB_URL,
            contact_email=_env_str("PEERLY_CONTACT_EMAIL") or DEFAULT_CONTACT_EMAIL,
            s2_api_key=_env_str("PEERLY_S2_API_KEY"),
            ncbi_api_key=_env_str("PEERLY_NCBI_API_KEY"),
            min_global_interval=_env_float("PEERLY_MIN_GLOBAL_INTERVAL", 2.5),
            per_doi_cooldown=_env_float("PEERLY_PER_DOI_COOLDOWN", 45.0),
            rate_limit_penalty=_env_float("PEERLY_RATE_LIMIT_PENALTY", 10.0),
            first_lookup_delay=_env_float("PEERLY_FIRST_LOOKUP_DELAY", 0.1),
            cooldown_ledger_size=_env_int("PEERLY_COOLDOWN_LEDGER_SIZE", 10_000),
            http_timeout=_env_float("PEERLY_HTTP_TIMEOUT", 30.0),
            search_local_threshold=_env_int("PEERLY_SEARCH_LOCAL_THRESHOLD", 5, minimum=0),
        )
