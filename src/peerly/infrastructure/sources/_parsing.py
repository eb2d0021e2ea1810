"""Small payload coercion helpers shared by the source adapters."""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Set
from urllib.parse import quote

from peerly.domain.doi import is_valid, normalize

_YEAR_RE = re.compile(r"\b(\d{4})\b")


def as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def as_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def first_str(values: Any) -> Optional[str]:
    if isinstance(values, list):
        for value in values:
            text = as_str(value)
            if text:
                return text
        return None
    return as_str(values)


def year_from_text(text: Optional[str]) -> Optional[int]:
    match = _YEAR_RE.search(text or "")
    return int(match.group(1)) if match else None


def doi_or_none(raw: Any) -> Optional[str]:
    """Normalize a payload DOI; anything that is not DOI-shaped becomes None."""
    if not isinstance(raw, str):
        return None
    doi = normalize(raw)
    return doi if is_valid(doi) else None


def doi_set(raw_dois: Iterable[Any]) -> Set[str]:
    return {doi for doi in (doi_or_none(d) for d in raw_dois) if doi}


def doi_path(doi: str) -> str:
    """Escape a DOI for use inside a URL path, keeping its slashes."""
    return quote(doi, safe="/")
