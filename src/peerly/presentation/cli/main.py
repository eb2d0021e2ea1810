"""
CLI entry point.

Commands:
    peerly resolve-doi 10.1038/nature12373 [--refresh] [--json]
    peerly resolve-pmid 23903748 [--json]
    peerly resolve-many DOI [DOI ...] [--json]
    peerly search '"graph neural" AND year:2021' [--limit 10] [--json]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

from peerly.application.workflows.paper_lookup import PaperLookupWorkflow
from peerly.domain.lookup import LookupResult, LookupStatus
from peerly.domain.paper import ExternalPaperRecord
from peerly.utils.logging_config import LogFiles, Logger, clear_trace_id, set_trace_id

# Load local .env so PEERLY_* settings apply to CLI runs.
load_dotenv(find_dotenv(usecwd=True), override=False)

VERSION = "0.1.0"


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peerly",
        description="Peerly - paper metadata resolution and keyword search",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    doi_parser = subparsers.add_parser("resolve-doi", help="Resolve a DOI or doi.org URL")
    doi_parser.add_argument("doi", help="DOI, doi:DOI or https://doi.org/DOI")
    doi_parser.add_argument("--refresh", action="store_true", help="Ignore the local store")
    doi_parser.add_argument("--json", action="store_true", help="Print the full JSON result")

    pmid_parser = subparsers.add_parser("resolve-pmid", help="Resolve a PubMed ID")
    pmid_parser.add_argument("pmid", help="Numeric PubMed ID")
    pmid_parser.add_argument("--json", action="store_true", help="Print the full JSON result")

    many_parser = subparsers.add_parser("resolve-many", help="Resolve several DOIs in batches")
    many_parser.add_argument("dois", nargs="+", help="DOIs to resolve")
    many_parser.add_argument("--json", action="store_true", help="Print the full JSON result")

    search_parser = subparsers.add_parser("search", help="Keyword search (store first, then sources)")
    search_parser.add_argument("query", help='Query, e.g. \'"deep learning" AND author:hinton\'')
    search_parser.add_argument("--limit", "-n", type=int, default=20, help="Maximum results")
    search_parser.add_argument("--json", action="store_true", help="Print the full JSON result")

    return parser


def _make_workflow() -> PaperLookupWorkflow:
    return PaperLookupWorkflow()


def _format_record(record: ExternalPaperRecord) -> List[str]:
    venue = record.journal or record.conference or "-"
    authors = record.author_names()
    shown = ", ".join(authors[:5]) + (" et al." if len(authors) > 5 else "")
    return [
        f"doi: {record.doi}",
        f"title: {record.title or '-'}",
        f"authors: {shown or '-'}",
        f"year: {record.year if record.year is not None else '-'}",
        f"venue: {venue}",
        f"citations: {record.citation_count if record.citation_count is not None else '-'}",
        f"sources: {', '.join(record.ordered_sources()) or '-'}",
    ]


def _print_lookup(result: LookupResult, as_json: bool) -> int:
    if as_json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(f"status: {result.status.value}{' (cached)' if result.cached else ''}")
        if result.record is not None and not result.record.is_empty:
            print("\n".join(_format_record(result.record)))
        for error in result.errors:
            print(f"warning: {error}", file=sys.stderr)
    return 0 if result.status == LookupStatus.OK else 1


async def _resolve_doi(workflow: PaperLookupWorkflow, parsed: argparse.Namespace) -> int:
    result = await workflow.resolve_doi(parsed.doi, refresh=parsed.refresh)
    return _print_lookup(result, parsed.json)


async def _resolve_pmid(workflow: PaperLookupWorkflow, parsed: argparse.Namespace) -> int:
    result = await workflow.resolve_pmid(parsed.pmid)
    return _print_lookup(result, parsed.json)


async def _resolve_many(workflow: PaperLookupWorkflow, parsed: argparse.Namespace) -> int:
    results = await workflow.resolve_many(parsed.dois)
    if parsed.json:
        payload: Dict[str, Any] = {doi: r.to_dict() for doi, r in results.items()}
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        for doi in parsed.dois:
            result = results.get(doi)
            status = result.status.value if result is not None else "failed"
            title = result.record.title if result is not None and result.record else None
            print(f"{doi}\t{status}\t{title or '-'}")
    ok = sum(1 for r in results.values() if r.ok)
    return 0 if ok == len(set(parsed.dois)) else 1


async def _search(workflow: PaperLookupWorkflow, parsed: argparse.Namespace) -> int:
    result = await workflow.search_detailed(parsed.query, limit=max(1, parsed.limit))
    if parsed.json:
        payload = {
            "query": result.query,
            "local_hits": result.local_hits,
            "sources": result.queried_sources,
            "results": [r.to_dict() for r in result.records],
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print(f"query: {result.query}")
    print(f"results: {len(result.records)} ({result.local_hits} from store)")
    for i, record in enumerate(result.records, 1):
        cites = record.citation_count if record.citation_count is not None else 0
        print(f"{i:>3}. [{cites}] {record.title or '-'} ({record.year or '-'}) {record.doi}")
    return 0


_COMMANDS = {
    "resolve-doi": _resolve_doi,
    "resolve-pmid": _resolve_pmid,
    "resolve-many": _resolve_many,
    "search": _search,
}


async def _run_command(parsed: argparse.Namespace) -> int:
    workflow = _make_workflow()
    try:
        return await _COMMANDS[parsed.command](workflow, parsed)
    finally:
        await workflow.close()


def run_cli(args: Optional[List[str]] = None) -> int:
    """
    Run the CLI.

    Returns:
        Exit code: 0 when the lookup succeeded, 1 otherwise
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        print(f"Peerly v{VERSION}")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    set_trace_id()
    try:
        Logger.info(f"CLI command: {parsed.command}", file=LogFiles.RESOLVER)
        return asyncio.run(_run_command(parsed))
    except Exception as e:
        Logger.error(f"CLI command {parsed.command} failed: {e}", file=LogFiles.ERROR)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        clear_trace_id()


if __name__ == "__main__":
    sys.exit(run_cli())
