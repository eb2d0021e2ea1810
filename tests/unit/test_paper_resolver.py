import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from peerly.application.ports.paper_store_port import DuplicatePaperError, PaperStoreError
from peerly.application.services.metadata_fetcher import MetadataFetcher
from peerly.application.services.paper_resolver import PaperResolver, persist_record
from peerly.application.services.rate_limiter import RateLimiter
from peerly.domain.lookup import LookupStatus
from peerly.domain.paper import Author, ExternalPaperRecord, PartialResult, SourceName
from peerly.infrastructure.api_clients.base import APIError, RateLimitedError
from peerly.infrastructure.sources.pubmed_client import PubMedClient


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeStore:
    """In-memory stand-in for the Paper Store."""

    def __init__(self):
        self.rows = {}
        self.updates = []
        self._next_id = 1

    def get_paper_by_doi(self, doi):
        row = self.rows.get(doi)
        return dict(row) if row else None

    def upsert_paper(self, doi, fields):
        row = self.rows.get(doi)
        if row is None:
            row = {"id": self._next_id, "doi": doi}
            self._next_id += 1
            self.rows[doi] = row
        row.update(fields)
        return dict(row)

    def update_paper(self, doi, fields):
        self.updates.append((doi, fields))
        row = self.rows.get(doi)
        if row is None:
            raise PaperStoreError(f"No paper with DOI {doi}")
        row.update(fields)
        return dict(row)

    def search_papers(self, conditions, *, limit=20):
        return []


def _source(name, result=None, error=None):
    source = MagicMock()
    source.source = name
    source.lookup_doi = AsyncMock(return_value=result, side_effect=error)
    source.close = AsyncMock()
    return source


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(min_global_interval=2.5, per_doi_cooldown=45, rate_limit_penalty=10, clock=clock, sleep=clock.sleep)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def openalex():
    return _source(
        SourceName.OPENALEX,
        PartialResult(source=SourceName.OPENALEX, title="Example Paper", external_id="W123"),
    )


@pytest.fixture
def crossref():
    return _source(
        SourceName.CROSSREF,
        PartialResult(source=SourceName.CROSSREF, abstract_inverted_index={"foo": [0], "bar": [1]}),
    )


def _resolver(sources, limiter, clock, store=None, **kwargs):
    return PaperResolver(
        fetcher=MetadataFetcher(sources),
        rate_limiter=limiter,
        store=store,
        sleep=clock.sleep,
        **kwargs,
    )


class TestResolveByDoi:
    @pytest.mark.asyncio
    async def test_reconciles_and_persists(self, openalex, crossref, limiter, clock, store):
        resolver = _resolver([crossref, openalex], limiter, clock, store)

        result = await resolver.resolve_by_doi("https://doi.org/10.1038/NATURE.2023.001")

        assert result.status == LookupStatus.OK
        record = result.record
        assert record.doi == "10.1038/nature.2023.001"
        assert record.title == "Example Paper"
        assert record.abstract == "foo bar"
        assert record.sources == {SourceName.OPENALEX, SourceName.CROSSREF}
        assert result.persisted
        assert result.paper["id"] == 1
        assert store.rows["10.1038/nature.2023.001"]["sources"] == ["openalex", "crossref"]
        openalex.lookup_doi.assert_awaited_once_with("10.1038/nature.2023.001")

    @pytest.mark.asyncio
    async def test_invalid_input_makes_no_calls(self, openalex, limiter, clock, store):
        resolver = _resolver([openalex], limiter, clock, store)

        for raw in ("", "deep learning", "10.12/x", "pmid:12345"):
            result = await resolver.resolve_by_doi(raw)
            assert result.status == LookupStatus.INVALID_INPUT
            assert result.record.is_empty

        openalex.lookup_doi.assert_not_awaited()
        assert limiter.tracked_count() == 0
        assert clock.sleeps == []
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_cooldown_serves_stored_paper(self, openalex, limiter, clock, store):
        resolver = _resolver([openalex], limiter, clock, store)

        first = await resolver.resolve_by_doi("10.1000/abc")
        clock.now += 10
        second = await resolver.resolve_by_doi("doi:10.1000/ABC")

        assert first.status == LookupStatus.OK
        assert second.status == LookupStatus.COOLDOWN
        assert second.cached
        assert second.record.title == "Example Paper"
        assert openalex.lookup_doi.await_count == 1

    @pytest.mark.asyncio
    async def test_cooldown_without_stored_paper(self, openalex, limiter, clock):
        resolver = _resolver([openalex], limiter, clock)

        await resolver.resolve_by_doi("10.1000/abc")
        second = await resolver.resolve_by_doi("10.1000/abc")

        assert second.status == LookupStatus.COOLDOWN
        assert not second.cached
        assert second.record.doi == "10.1000/abc"
        assert second.record.is_empty

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_make_one_batch(self, openalex, limiter, clock, store):
        resolver = _resolver([openalex], limiter, clock, store)

        results = await asyncio.gather(*(resolver.resolve_by_doi("10.1000/abc") for _ in range(3)))

        statuses = sorted(r.status.value for r in results)
        assert statuses == ["cooldown", "cooldown", "ok"]
        assert openalex.lookup_doi.await_count == 1

    @pytest.mark.asyncio
    async def test_second_batch_after_window(self, openalex, limiter, clock, store):
        resolver = _resolver([openalex], limiter, clock, store)

        await resolver.resolve_by_doi("10.1000/abc")
        clock.now += 45
        again = await resolver.resolve_by_doi("10.1000/abc")

        assert again.status == LookupStatus.OK
        assert openalex.lookup_doi.await_count == 2
        assert store.updates == []

    @pytest.mark.asyncio
    async def test_distinct_dois_are_spaced(self, limiter, clock):
        starts = []

        async def lookup(doi):
            starts.append(clock.now)
            return PartialResult(source=SourceName.OPENALEX, title=doi)

        source = _source(SourceName.OPENALEX)
        source.lookup_doi = lookup
        resolver = _resolver([source], limiter, clock)

        for n in range(4):
            await resolver.resolve_by_doi(f"10.1000/paper{n}")

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert gaps == [pytest.approx(2.5)] * 3

    @pytest.mark.asyncio
    async def test_first_lookup_delay_only_once(self, openalex, limiter, clock):
        resolver = _resolver([openalex], limiter, clock)

        await resolver.resolve_by_doi("10.1000/abc")
        assert clock.sleeps == [0.1]

    @pytest.mark.asyncio
    async def test_not_found_when_sources_have_nothing(self, limiter, clock, store):
        resolver = _resolver(
            [_source(SourceName.OPENALEX, None), _source(SourceName.CROSSREF, error=APIError("down"))],
            limiter,
            clock,
            store,
        )

        result = await resolver.resolve_by_doi("10.1000/missing")

        assert result.status == LookupStatus.NOT_FOUND
        assert result.record.is_empty
        assert result.errors == ["crossref: down"]
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_transport_failure_and_penalty(self, limiter, clock):
        resolver = _resolver(
            [
                _source(SourceName.OPENALEX, error=RateLimitedError("HTTP 429", status=429)),
                _source(SourceName.CROSSREF, error=APIError("timeout")),
            ],
            limiter,
            clock,
        )

        result = await resolver.resolve_by_doi("10.1000/abc")

        assert result.status == LookupStatus.TRANSPORT_FAILURE
        assert limiter.next_allowed_at == pytest.approx(clock.now + 2.5 + 10)

    @pytest.mark.asyncio
    async def test_works_without_store(self, openalex, limiter, clock):
        result = await _resolver([openalex], limiter, clock).resolve_by_doi("10.1000/abc")

        assert result.ok
        assert not result.persisted
        assert result.paper["id"] is None
        assert result.paper["title"] == "Example Paper"


class TestPersistRecord:
    def _record(self):
        return ExternalPaperRecord(doi="10.1000/abc", title="T", sources={SourceName.CROSSREF})

    def test_duplicate_falls_back_to_update(self):
        store = MagicMock()
        store.upsert_paper.side_effect = DuplicatePaperError("10.1000/abc")
        store.update_paper.return_value = {"id": 9, "doi": "10.1000/abc"}

        row, persisted = persist_record(store, self._record())

        assert persisted
        assert row["id"] == 9
        store.update_paper.assert_called_once()

    def test_failed_update_returns_unpersisted_row(self):
        store = MagicMock()
        store.upsert_paper.side_effect = DuplicatePaperError("10.1000/abc")
        store.update_paper.side_effect = PaperStoreError("locked")

        row, persisted = persist_record(store, self._record())

        assert not persisted
        assert row["id"] is None
        assert row["doi"] == "10.1000/abc"
        assert row["title"] == "T"

    def test_store_error_returns_unpersisted_row(self):
        store = MagicMock()
        store.upsert_paper.side_effect = PaperStoreError("disk full")

        row, persisted = persist_record(store, self._record())

        assert not persisted
        store.update_paper.assert_not_called()

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_fail_lookup(self, openalex, limiter, clock):
        store = MagicMock()
        store.get_paper_by_doi.return_value = None
        store.upsert_paper.side_effect = PaperStoreError("disk full")

        result = await _resolver([openalex], limiter, clock, store).resolve_by_doi("10.1000/abc")

        assert result.ok
        assert not result.persisted


class TestGetOrResolve:
    @pytest.mark.asyncio
    async def test_stored_paper_short_circuits(self, openalex, limiter, clock, store):
        store.upsert_paper("10.1000/abc", {"title": "Stored", "sources": ["crossref"]})
        resolver = _resolver([openalex], limiter, clock, store)

        result = await resolver.get_or_resolve("https://doi.org/10.1000/ABC")

        assert result.ok and result.cached
        assert result.record.title == "Stored"
        openalex.lookup_doi.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_paper_is_resolved(self, openalex, limiter, clock, store):
        result = await _resolver([openalex], limiter, clock, store).get_or_resolve("10.1000/abc")

        assert result.ok and not result.cached
        openalex.lookup_doi.assert_awaited_once()


class TestResolveMany:
    @pytest.mark.asyncio
    async def test_batches_and_dedups(self, openalex, limiter, clock):
        resolver = _resolver([openalex], limiter, clock)

        results = await resolver.resolve_many(
            ["10.1000/a", "10.1000/b", "10.1000/a", "10.1000/c", "nope"], batch_size=2
        )

        assert list(results) == ["10.1000/a", "10.1000/b", "10.1000/c", "nope"]
        assert results["nope"].status == LookupStatus.INVALID_INPUT
        assert openalex.lookup_doi.await_count == 3
        assert clock.sleeps.count(PaperResolver.BATCH_PAUSE) == 1


class TestResolveByPmid:
    def _pubmed(self, summary=None, error=None):
        pubmed = MagicMock()
        pubmed.fetch_summary = AsyncMock(return_value=summary, side_effect=error)
        pubmed.close = AsyncMock()
        return pubmed

    @pytest.mark.asyncio
    async def test_pmid_with_doi_resolves_doi(self, openalex, limiter, clock, store):
        pubmed = self._pubmed({"articleids": [{"idtype": "doi", "value": "10.1093/EurHeartJ/ehaf673"}]})
        resolver = _resolver([openalex], limiter, clock, store, pubmed=pubmed)

        result = await resolver.resolve_by_pmid(" 40123456 ")

        assert result.ok
        assert result.record.doi == "10.1093/eurheartj/ehaf673"
        pubmed.fetch_summary.assert_awaited_once_with("40123456")
        openalex.lookup_doi.assert_awaited_once_with("10.1093/eurheartj/ehaf673")

    @pytest.mark.asyncio
    async def test_pmid_without_doi_returns_partial(self, openalex, limiter, clock, store):
        pubmed = self._pubmed(
            {
                "title": "A PubMed-only paper",
                "authors": [{"name": "Smith J"}],
                "pubdate": "2019 Mar",
                "fulljournalname": "The Journal",
            }
        )
        resolver = _resolver([openalex], limiter, clock, store, pubmed=pubmed)

        result = await resolver.resolve_by_pmid("123")

        assert result.ok
        assert result.record.doi == "pmid:123"
        assert result.record.year == 2019
        assert result.record.sources == {SourceName.PUBMED}
        assert store.rows == {}
        openalex.lookup_doi.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_pmid(self, limiter, clock):
        pubmed = self._pubmed()
        resolver = _resolver([], limiter, clock, pubmed=pubmed)

        assert (await resolver.resolve_by_pmid("PMC123")).status == LookupStatus.INVALID_INPUT
        pubmed.fetch_summary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_pmid(self, limiter, clock):
        resolver = _resolver([], limiter, clock, pubmed=self._pubmed(None))
        assert (await resolver.resolve_by_pmid("999")).status == LookupStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_malformed_esummary_is_not_found(self, limiter, clock):
        client = MagicMock()
        client.get = AsyncMock(return_value={"result": [{"uid": "123"}]})
        resolver = _resolver([], limiter, clock, pubmed=PubMedClient(client=client))

        result = await resolver.resolve_by_pmid("123")

        assert result.status == LookupStatus.NOT_FOUND
        assert result.record is None

    @pytest.mark.asyncio
    async def test_pubmed_rate_limit(self, limiter, clock):
        pubmed = self._pubmed(error=RateLimitedError("HTTP 429", status=429))
        resolver = _resolver([], limiter, clock, pubmed=pubmed)

        result = await resolver.resolve_by_pmid("123")

        assert result.status == LookupStatus.TRANSPORT_FAILURE
        assert limiter.next_allowed_at == pytest.approx(clock.now + 2.5 + 10)


class TestCitingEnrichment:
    @pytest.fixture
    def authored(self):
        return _source(
            SourceName.OPENALEX,
            PartialResult(
                source=SourceName.OPENALEX,
                title="Cited Paper",
                authors=[Author(name="A Author")],
                external_id="W42",
            ),
        )

    @pytest.mark.asyncio
    async def test_background_enrichment_updates_store(self, authored, limiter, clock, store):
        citing = MagicMock()
        citing.citing_dois = AsyncMock(return_value=["10.9999/b", "10.9999/a"])
        citing.close = AsyncMock()
        resolver = _resolver([authored], limiter, clock, store, citing_source=citing)

        result = await resolver.resolve_by_doi("10.1000/cited")
        assert resolver.pending_tasks == 1

        await resolver.drain()

        assert resolver.pending_tasks == 0
        citing.citing_dois.assert_awaited_once_with("10.1000/cited", work_id="W42")
        assert result.record.citing_dois == {"10.9999/a", "10.9999/b"}
        assert store.rows["10.1000/cited"]["citing_dois"] == ["10.9999/a", "10.9999/b"]

    @pytest.mark.asyncio
    async def test_enrichment_failure_is_contained(self, authored, limiter, clock, store):
        citing = MagicMock()
        citing.citing_dois = AsyncMock(side_effect=APIError("down"))
        resolver = _resolver([authored], limiter, clock, store, citing_source=citing)

        result = await resolver.resolve_by_doi("10.1000/cited")
        await resolver.drain()

        assert result.ok
        assert result.record.citing_dois is None
        assert store.updates == []

    @pytest.mark.asyncio
    async def test_no_enrichment_without_authors(self, openalex, limiter, clock):
        citing = MagicMock()
        citing.citing_dois = AsyncMock(return_value=[])
        resolver = _resolver([openalex], limiter, clock, citing_source=citing)

        await resolver.resolve_by_doi("10.1000/abc")

        assert resolver.pending_tasks == 0
        citing.citing_dois.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_closes_each_client_once(self, authored, limiter, clock):
        authored.citing_dois = AsyncMock(return_value=[])
        pubmed = MagicMock()
        pubmed.close = AsyncMock()
        resolver = _resolver([authored], limiter, clock, pubmed=pubmed, citing_source=authored)

        await resolver.close()

        authored.close.assert_awaited_once()
        pubmed.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enrichment_waits_for_global_slot(self, authored, limiter, clock, store):
        calls = []
        partial = authored.lookup_doi.return_value

        async def lookup_doi(doi):
            calls.append(("lookup", clock.now))
            return partial

        async def citing_dois(doi, work_id=None):
            calls.append(("citing", clock.now))
            return ["10.9999/a"]

        citing = MagicMock()
        authored.lookup_doi = lookup_doi
        citing.citing_dois = citing_dois
        resolver = _resolver([authored], limiter, clock, store, citing_source=citing)

        await resolver.resolve_by_doi("10.1000/cited")
        await resolver.drain()

        assert [name for name, _ in calls] == ["lookup", "citing"]
        assert calls[0][1] == pytest.approx(1000.1)
        assert calls[1][1] - calls[0][1] == pytest.approx(2.5)
        assert limiter.next_allowed_at == pytest.approx(1005.1)

    @pytest.mark.asyncio
    async def test_enrichment_rate_limit_penalizes(self, authored, limiter, clock, store):
        citing = MagicMock()
        citing.citing_dois = AsyncMock(side_effect=RateLimitedError("HTTP 429", status=429))
        resolver = _resolver([authored], limiter, clock, store, citing_source=citing)

        result = await resolver.resolve_by_doi("10.1000/cited")
        await resolver.drain()

        assert result.record.citing_dois is None
        assert store.updates == []
        assert limiter.next_allowed_at == pytest.approx(clock.now + 2.5 + 10)
