"""
Bibliographic metadata sources.

Each DOI source implements MetadataSourcePort and maps its payloads to
PartialResult. ``build_sources`` returns them in merge priority order.
"""

from typing import List, Optional

from .crossref_source import CrossRefSource
from .openalex_source import OpenAlexSource
from .pubmed_client import PubMedClient
from .semantic_scholar_source import SemanticScholarSource


def build_sources(
    *,
    email: Optional[str] = None,
    s2_api_key: Optional[str] = None,
    timeout: float = 30,
) -> List:
    return [
        OpenAlexSource(email=email, timeout=timeout),
        CrossRefSource(email=email, timeout=timeout),
        SemanticScholarSource(api_key=s2_api_key, email=email, timeout=timeout),
    ]


__all__ = [
    "CrossRefSource",
    "OpenAlexSource",
    "PubMedClient",
    "SemanticScholarSource",
    "build_sources",
]
