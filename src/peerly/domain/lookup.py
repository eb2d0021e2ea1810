# src/peerly/domain/lookup.py
"""
Lookup outcome types.

A resolver call always produces a LookupResult. ``record`` is populated even on
failure (an empty record), so callers that only look at the record see "no data";
callers that care can branch on ``status`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from peerly.domain.paper import ExternalPaperRecord


class LookupStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    COOLDOWN = "cooldown"
    TRANSPORT_FAILURE = "transport_failure"


@dataclass
class LookupResult:
    """Result of one DOI/PMID resolution."""

    status: LookupStatus
    record: Optional[ExternalPaperRecord] = None
    paper: Optional[Dict[str, Any]] = None
    cached: bool = False
    persisted: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == LookupStatus.OK

    @property
    def has_data(self) -> bool:
        return self.record is not None and not self.record.is_empty

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "record": self.record.to_dict() if self.record is not None else None,
            "paper": self.paper,
            "cached": self.cached,
            "persisted": self.persisted,
            "errors": list(self.errors),
        }
