import json

from peerly.application.services.keyword_search_service import KeywordSearchResult
from peerly.domain.lookup import LookupResult, LookupStatus
from peerly.domain.paper import Author, ExternalPaperRecord, SourceName
from peerly.presentation.cli import main as cli_main


def _record(doi="10.1038/nature12373"):
    return ExternalPaperRecord(
        doi=doi,
        title="Example Paper",
        authors=[Author(name="Ada Lovelace")],
        year=2023,
        citation_count=4,
        sources={SourceName.OPENALEX},
    )


class _FakeWorkflow:
    instances = []

    def __init__(self):
        self.closed = False
        self.calls = []
        _FakeWorkflow.instances.append(self)

    async def resolve_doi(self, doi, *, refresh=False):
        self.calls.append(("doi", doi, refresh))
        return LookupResult(status=LookupStatus.OK, record=_record(), cached=not refresh)

    async def resolve_pmid(self, pmid):
        return LookupResult(status=LookupStatus.INVALID_INPUT)

    async def resolve_many(self, dois):
        return {
            doi: LookupResult(status=LookupStatus.OK, record=_record(doi))
            for doi in dict.fromkeys(dois)
            if doi != "10.1000/missing"
        }

    async def search_detailed(self, query, limit=20):
        self.calls.append(("search", query, limit))
        return KeywordSearchResult(query=query, records=[_record()], local_hits=0, queried_sources=["openalex"])

    async def close(self):
        self.closed = True


class _BrokenWorkflow(_FakeWorkflow):
    async def resolve_doi(self, doi, *, refresh=False):
        raise RuntimeError("database is locked")


def test_cli_parser_flags():
    parser = cli_main.create_parser()
    args = parser.parse_args(["search", "graph AND year:2021", "-n", "5", "--json"])

    assert args.command == "search"
    assert args.query == "graph AND year:2021"
    assert args.limit == 5
    assert args.json is True


def test_cli_resolve_doi_text_output(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_make_workflow", _FakeWorkflow)

    exit_code = cli_main.run_cli(["resolve-doi", "https://doi.org/10.1038/nature12373"])
    out = capsys.readouterr().out

    assert exit_code == 0
    assert "status: ok (cached)" in out
    assert "title: Example Paper" in out
    assert "authors: Ada Lovelace" in out
    workflow = _FakeWorkflow.instances[-1]
    assert workflow.calls == [("doi", "https://doi.org/10.1038/nature12373", False)]
    assert workflow.closed


def test_cli_resolve_doi_json_output(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_make_workflow", _FakeWorkflow)

    exit_code = cli_main.run_cli(["resolve-doi", "10.1038/nature12373", "--refresh", "--json"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert payload["status"] == "ok"
    assert payload["cached"] is False
    assert payload["record"]["sources"] == ["openalex"]


def test_cli_resolve_pmid_failure_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_make_workflow", _FakeWorkflow)

    assert cli_main.run_cli(["resolve-pmid", "abc"]) == 1
    assert "status: invalid_input" in capsys.readouterr().out


def test_cli_resolve_many(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_make_workflow", _FakeWorkflow)

    exit_code = cli_main.run_cli(["resolve-many", "10.1000/a", "10.1000/missing"])
    lines = capsys.readouterr().out.splitlines()

    assert exit_code == 1
    assert lines == ["10.1000/a\tok\tExample Paper", "10.1000/missing\tfailed\t-"]


def test_cli_search_text_output(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_make_workflow", _FakeWorkflow)

    exit_code = cli_main.run_cli(["search", "example", "--limit", "3"])
    out = capsys.readouterr().out

    assert exit_code == 0
    assert "results: 1 (0 from store)" in out
    assert "[4] Example Paper (2023) 10.1038/nature12373" in out
    assert _FakeWorkflow.instances[-1].calls == [("search", "example", 3)]


def test_cli_reports_unexpected_errors(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_make_workflow", _BrokenWorkflow)

    exit_code = cli_main.run_cli(["resolve-doi", "10.1038/nature12373"])

    assert exit_code == 1
    assert "Error: database is locked" in capsys.readouterr().err
    assert _FakeWorkflow.instances[-1].closed


def test_cli_version(capsys):
    assert cli_main.run_cli(["--version"]) == 0
    assert "Peerly v0.1.0" in capsys.readouterr().out
