"""
PaperStore integration tests.

Tests DOI-keyed upsert, partial update, duplicate handling and search against a
temporary SQLite database.
"""

import pytest
from sqlalchemy import select as real_select

from peerly.application.ports.paper_store_port import DuplicatePaperError, PaperStoreError
from peerly.infrastructure.stores import paper_store as paper_store_module
from peerly.infrastructure.stores.models import PaperModel
from peerly.infrastructure.stores.paper_store import PaperStore


@pytest.fixture
def paper_store(tmp_path):
    """Create a PaperStore with a temporary SQLite database."""
    db_url = f"sqlite:///{tmp_path / 'test_papers.db'}"
    store = PaperStore(db_url=db_url, auto_create_schema=True)
    yield store
    store.close()


def _fields(**overrides):
    fields = {
        "title": "Attention Is All You Need",
        "abstract": "We propose the Transformer.",
        "authors": ["Ashish Vaswani", "Noam Shazeer"],
        "year": 2017,
        "journal": None,
        "conference": "Advances in Neural Information Processing Systems",
        "citation_count": 100,
        "citing_dois": ["10.1000/b", "10.1000/a", "10.1000/a"],
        "sources": ["openalex", "crossref"],
    }
    fields.update(overrides)
    return fields


class TestPaperStoreUpsert:
    """Tests for insert-or-update by DOI."""

    def test_insert_and_read_back(self, paper_store):
        row = paper_store.upsert_paper("10.5555/Transformer", _fields())

        assert row["id"] == 1
        assert row["doi"] == "10.5555/transformer"
        assert row["authors"] == ["Ashish Vaswani", "Noam Shazeer"]
        assert row["citing_dois"] == ["10.1000/a", "10.1000/b"]
        assert row["sources"] == ["openalex", "crossref"]
        assert row["created_at"] is not None

        stored = paper_store.get_paper_by_doi("https://doi.org/10.5555/TRANSFORMER")
        assert stored["title"] == "Attention Is All You Need"
        assert paper_store.get_paper_by_id(row["id"])["doi"] == "10.5555/transformer"

    def test_upsert_existing_doi_updates_in_place(self, paper_store):
        first = paper_store.upsert_paper("10.5555/x", _fields())
        second = paper_store.upsert_paper("doi:10.5555/X", _fields(title="Revised", citation_count=None))

        assert second["id"] == first["id"]
        assert second["title"] == "Revised"
        assert second["citation_count"] is None
        assert paper_store.count_papers() == 1

    def test_missing_paper(self, paper_store):
        assert paper_store.get_paper_by_doi("10.5555/none") is None
        assert paper_store.get_paper_by_doi("") is None

    def test_pmid_placeholder_kept_verbatim(self, paper_store):
        row = paper_store.upsert_paper("pmid:123", _fields(sources=["pubmed"]))
        assert row["doi"] == "pmid:123"

    def test_empty_doi_rejected(self, paper_store):
        with pytest.raises(PaperStoreError):
            paper_store.upsert_paper("  ", _fields())

    def test_lost_insert_race_raises_duplicate(self, paper_store, monkeypatch):
        paper_store.upsert_paper("10.5555/race", _fields())
        # the existence check misses, as if another writer inserted concurrently
        monkeypatch.setattr(
            paper_store_module,
            "select",
            lambda *entities: real_select(*entities).where(PaperModel.id < 0),
        )

        with pytest.raises(DuplicatePaperError) as excinfo:
            paper_store.upsert_paper("10.5555/race", _fields(title="Other"))

        assert excinfo.value.doi == "10.5555/race"


class TestPaperStoreUpdate:
    def test_update_only_touches_given_fields(self, paper_store):
        paper_store.upsert_paper("10.5555/x", _fields())

        row = paper_store.update_paper("10.5555/x", {"citing_dois": ["10.2000/z"]})

        assert row["citing_dois"] == ["10.2000/z"]
        assert row["title"] == "Attention Is All You Need"
        assert row["citation_count"] == 100

    def test_update_missing_paper(self, paper_store):
        with pytest.raises(PaperStoreError):
            paper_store.update_paper("10.5555/missing", {"title": "x"})


class TestPaperStoreSearch:
    @pytest.fixture(autouse=True)
    def _papers(self, paper_store):
        paper_store.upsert_paper("10.5555/a", _fields(title="Graph Neural Networks", citation_count=5, year=2021))
        paper_store.upsert_paper(
            "10.5555/b",
            _fields(title="Protein Folding", abstract="Graph methods for proteins", citation_count=50, year=2020),
        )
        paper_store.upsert_paper(
            "10.5555/c",
            _fields(title="100% Accuracy?", authors=["Grace Hopper"], citation_count=None, journal="Nature"),
        )

    def test_case_insensitive_or_search_ranked_by_citations(self, paper_store):
        rows = paper_store.search_papers([("title", "GRAPH"), ("abstract", "graph")])
        assert [r["doi"] for r in rows] == ["10.5555/b", "10.5555/a"]

    def test_author_and_year_columns(self, paper_store):
        assert [r["doi"] for r in paper_store.search_papers([("author", "hopper")])] == ["10.5555/c"]
        assert [r["doi"] for r in paper_store.search_papers([("year", "2020")])] == ["10.5555/b"]

    def test_wildcards_are_literal(self, paper_store):
        assert [r["doi"] for r in paper_store.search_papers([("title", "100%")])] == ["10.5555/c"]
        assert paper_store.search_papers([("title", "_raph")]) == []

    def test_limit_and_unknown_columns(self, paper_store):
        assert len(paper_store.search_papers([("title", "a")], limit=1)) == 1
        assert paper_store.search_papers([("nonsense", "graph"), ("title", "  ")]) == []
