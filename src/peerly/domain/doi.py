from __future__ import annotations

import re
from urllib.parse import quote, unquote

_RESOLVER_PREFIX_RE = re.compile(r"^https?://(dx\.)?doi\.org/")
_DOI_SCHEME_RE = re.compile(r"^doi:\s*", re.IGNORECASE)
_CANONICAL_DOI_RE = re.compile(r"^10\.\d{4,}/\S+$")

DOI_RESOLVER_URL = "https://doi.org/"


def normalize(raw: str | None) -> str:
    """Canonical lower-case DOI text; never fails, garbage stays garbage."""
    text = (raw or "").strip().lower()
    # strip until stable so stacked prefixes cannot break idempotence
    while True:
        stripped = _DOI_SCHEME_RE.sub("", _RESOLVER_PREFIX_RE.sub("", text)).strip()
        if stripped == text:
            return text
        text = stripped


def is_valid(doi_or_raw: str | None) -> bool:
    return bool(_CANONICAL_DOI_RE.match(normalize(doi_or_raw)))


def to_url(doi: str) -> str:
    return f"{DOI_RESOLVER_URL}{normalize(doi)}"


def encode_for_url(doi: str) -> str:
    return quote(normalize(doi), safe="")


def decode_from_url(segment: str) -> str:
    return normalize(unquote(segment or ""))
