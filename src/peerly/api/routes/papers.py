# src/peerly/api/routes/papers.py
"""
Paper lookup API routes.

Provides endpoints for:
- DOI resolution (store first, ``refresh=true`` forces a source lookup)
- PMID resolution
- Keyword search

Lookup failures never become 5xx responses; the body's ``status`` says what happened.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from peerly.application.workflows.paper_lookup import PaperLookupWorkflow
from peerly.domain.lookup import LookupResult
from peerly.domain.paper import ExternalPaperRecord
from peerly.utils.logging_config import LogFiles, Logger, clear_trace_id, set_trace_id

router = APIRouter()

# Lazy-initialized workflow (owns the process-wide rate limiter)
_workflow: Optional[PaperLookupWorkflow] = None


def _get_workflow() -> PaperLookupWorkflow:
    global _workflow
    if _workflow is None:
        _workflow = PaperLookupWorkflow()
    return _workflow


async def close_workflow() -> None:
    global _workflow
    if _workflow is not None:
        await _workflow.close()
        _workflow = None


class PaperRecordResponse(BaseModel):
    doi: str
    title: Optional[str] = None
    authors: Optional[List[str]] = None
    abstract: Optional[str] = None
    citation_count: Optional[int] = None
    citing_dois: Optional[List[str]] = None
    year: Optional[int] = None
    journal: Optional[str] = None
    conference: Optional[str] = None
    published_date: Optional[str] = None
    publisher: Optional[str] = None
    type: Optional[str] = None
    pdf_url: Optional[str] = None
    html_url: Optional[str] = None
    references_count: Optional[int] = None
    sources: List[str] = Field(default_factory=list)


class LookupResponse(BaseModel):
    status: str
    record: Optional[PaperRecordResponse] = None
    paper: Optional[Dict[str, Any]] = None
    cached: bool = False
    persisted: bool = False
    errors: List[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    query: str
    total: int
    local_hits: int
    sources: List[str]
    results: List[PaperRecordResponse]


def _record_response(record: Optional[ExternalPaperRecord]) -> Optional[PaperRecordResponse]:
    if record is None:
        return None
    return PaperRecordResponse(**record.to_dict())


def _lookup_response(result: LookupResult) -> LookupResponse:
    return LookupResponse(
        status=result.status.value,
        record=_record_response(result.record),
        paper=result.paper,
        cached=result.cached,
        persisted=result.persisted,
        errors=result.errors,
    )


@router.get("/papers/doi/{doi:path}", response_model=LookupResponse)
async def resolve_doi(doi: str, refresh: bool = Query(False, description="Skip the store")):
    """Resolve a DOI (bare, ``doi:`` prefixed, or a doi.org URL)."""
    set_trace_id()
    try:
        Logger.info(f"DOI lookup request: {doi} refresh={refresh}", file=LogFiles.API)
        result = await _get_workflow().resolve_doi(doi, refresh=refresh)
        return _lookup_response(result)
    finally:
        clear_trace_id()


@router.get("/papers/pmid/{pmid}", response_model=LookupResponse)
async def resolve_pmid(pmid: str):
    set_trace_id()
    try:
        Logger.info(f"PMID lookup request: {pmid}", file=LogFiles.API)
        result = await _get_workflow().resolve_pmid(pmid)
        return _lookup_response(result)
    finally:
        clear_trace_id()


@router.get("/papers/search", response_model=SearchResponse)
async def search_papers(
    q: str = Query(..., min_length=1, description="Keyword query (AND/OR/NOT, \"phrases\", field:value)"),
    limit: int = Query(20, ge=1, le=100),
):
    set_trace_id()
    try:
        Logger.info(f"Search request: q={q!r} limit={limit}", file=LogFiles.API)
        result = await _get_workflow().search_detailed(q, limit=limit)
        return SearchResponse(
            query=result.query,
            total=len(result.records),
            local_hits=result.local_hits,
            sources=result.queried_sources,
            results=[_record_response(r) for r in result.records],
        )
    finally:
        clear_trace_id()
