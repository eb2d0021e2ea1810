from unittest.mock import patch

from peerly.application.services.field_merger import FieldMerger
from peerly.domain.paper import Author, PartialResult, SourceName


def _partial(source, **fields):
    return PartialResult(source=source, **fields)


class TestFieldMerger:
    def test_first_non_empty_wins_in_priority_order(self):
        crossref = _partial(SourceName.CROSSREF, title="CrossRef Title", year=2020)
        openalex = _partial(SourceName.OPENALEX, title="OpenAlex Title")

        record = FieldMerger().merge("10.1000/x", [crossref, openalex])

        assert record.title == "OpenAlex Title"
        assert record.year == 2020
        assert record.sources == {SourceName.OPENALEX, SourceName.CROSSREF}

    def test_gaps_filled_from_lower_priority(self):
        record = FieldMerger().merge(
            "10.1000/x",
            [
                _partial(SourceName.SEMANTIC_SCHOLAR, abstract="Y", year=2020),
                _partial(SourceName.CROSSREF, title="B", abstract="X"),
                _partial(SourceName.OPENALEX, title="A"),
            ],
        )

        assert (record.title, record.abstract, record.year) == ("A", "X", 2020)

    def test_losing_source_is_still_recorded(self):
        openalex = _partial(SourceName.OPENALEX, title="A")
        s2 = _partial(SourceName.SEMANTIC_SCHOLAR, title="B")

        record = FieldMerger().merge("10.1000/x", [openalex, s2])

        assert record.title == "A"
        assert record.ordered_sources() == ["openalex", "semanticscholar"]

    def test_empty_partials_contribute_nothing(self):
        record = FieldMerger().merge(
            "10.1000/x",
            [None, _partial(SourceName.CROSSREF), _partial(SourceName.OPENALEX, citing_dois=set())],
        )
        assert record.is_empty
        assert record.title is None

    def test_blank_strings_do_not_win(self):
        record = FieldMerger().merge(
            "10.1000/x",
            [
                _partial(SourceName.OPENALEX, title="  ", journal="Nature"),
                _partial(SourceName.CROSSREF, title="  Real Title  "),
            ],
        )
        assert record.title == "Real Title"

    def test_counts_are_never_summed_and_zero_is_a_value(self):
        record = FieldMerger().merge(
            "10.1000/x",
            [
                _partial(SourceName.OPENALEX, title="T"),
                _partial(SourceName.CROSSREF, citation_count=0),
                _partial(SourceName.SEMANTIC_SCHOLAR, citation_count=50),
            ],
        )
        assert record.citation_count == 0

    def test_authors_taken_whole_from_first_source(self):
        record = FieldMerger().merge(
            "10.1000/x",
            [
                _partial(SourceName.OPENALEX, title="T"),
                _partial(SourceName.CROSSREF, authors=[Author(given="Ada", family="Lovelace")]),
                _partial(SourceName.SEMANTIC_SCHOLAR, authors=[Author(name="Someone"), Author(name="Else")]),
            ],
        )
        assert record.author_names() == ["Ada Lovelace"]

    def test_abstract_rebuilt_from_inverted_index(self):
        record = FieldMerger().merge(
            "10.1038/nature.2023.001",
            [
                _partial(SourceName.OPENALEX, title="Example Paper"),
                _partial(SourceName.CROSSREF, abstract_inverted_index={"foo": [0], "bar": [1]}),
            ],
        )
        assert record.title == "Example Paper"
        assert record.abstract == "foo bar"
        assert record.sources == {SourceName.OPENALEX, SourceName.CROSSREF}

    def test_inverted_index_not_rebuilt_when_abstract_present(self):
        with patch("peerly.application.services.field_merger.reconstruct_abstract") as rebuild:
            record = FieldMerger().merge(
                "10.1000/x",
                [
                    _partial(SourceName.OPENALEX, abstract="Plain prose."),
                    _partial(SourceName.CROSSREF, abstract_inverted_index={"ignored": [0]}),
                ],
            )
        rebuild.assert_not_called()
        assert record.abstract == "Plain prose."

    def test_citing_dois_filled_once(self):
        record = FieldMerger().merge(
            "10.1000/x",
            [
                _partial(SourceName.CROSSREF, title="T"),
                _partial(SourceName.SEMANTIC_SCHOLAR, citing_dois={"10.1000/a", "10.1000/b"}),
            ],
        )
        assert record.citing_dois == {"10.1000/a", "10.1000/b"}

    def test_merge_into_existing_record(self):
        merger = FieldMerger()
        record = merger.merge("10.1000/x", [_partial(SourceName.CROSSREF, title="T")])
        merger.merge_into(record, _partial(SourceName.OPENALEX, title="Other", citation_count=4))

        assert record.title == "T"
        assert record.citation_count == 4
        assert SourceName.OPENALEX in record.sources
