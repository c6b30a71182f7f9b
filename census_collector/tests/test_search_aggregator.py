"""Tests for multi-term search, qualification, filtering and caps."""
from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

import pytest

from census_collector.exceptions import UpstreamFetchError
from census_collector.models import CandidateEntity
from census_collector.providers.census import CensusProvider, CensusSearchProvider
from census_collector.providers.census_reporter import CensusReporterProvider
from census_collector.services.identifier_resolver import IdentifierResolver
from census_collector.services.search_aggregator import SearchAggregator, matches_filters
from census_collector.tests.utils import (
    CENSUS_SEARCH_PATH,
    METADATA_PATH,
    REPORTER_SEARCH_PATH,
    MockCensusServer,
    metadata_body,
    reporter_hits,
    table_routes,
)

RECENT = ["2023", "2022", "2021", "2020", "2019"]


class FakeSearch:
    """Serves fixed result lists per term, paged by offset."""

    def __init__(self, results: Dict[str, List[CandidateEntity]]):
        self.results = results
        self.calls: List[Tuple[str, int, int]] = []

    async def search_page(self, term: str, offset: int, limit: int) -> List[CandidateEntity]:
        self.calls.append((term, offset, limit))
        return self.results.get(term, [])[offset:offset + limit]

    @property
    def terms(self) -> List[str]:
        return [term for term, _, _ in self.calls]


class AcceptingProbe:
    """Accepts identifiers with the given prefixes and years, and codes if given."""

    def __init__(
        self,
        prefixes: Optional[Set[str]] = None,
        years: Optional[Set[str]] = None,
        codes: Optional[Set[str]] = None,
    ):
        self.prefixes = prefixes or {"ACSDT1Y"}
        self.years = years or {"2023"}
        self.codes = codes
        self.calls: List[str] = []

    async def probe_metadata(self, table_id: str) -> bool:
        self.calls.append(table_id)
        if self.codes is not None and table_id.split(".", 1)[-1] not in self.codes:
            return False
        return any(table_id.startswith(f"{p}{y}.") for p in self.prefixes for y in self.years)


def qualified(*ids: str) -> List[CandidateEntity]:
    return [CandidateEntity(id=identifier, title=identifier) for identifier in ids]


def bare(*codes: str) -> List[CandidateEntity]:
    return [CandidateEntity(bare_code=code, title=code) for code in codes]


def build(search: FakeSearch, probe=None, page_size: int = 50, multiplier: float = 2.0) -> SearchAggregator:
    resolver = IdentifierResolver(probe or AcceptingProbe(), RECENT)
    return SearchAggregator(search, resolver, page_size=page_size, early_exit_multiplier=multiplier)


def test_matches_filters():
    assert matches_filters("ACSDT1Y2021.B01001")
    assert matches_filters("ACSDT1Y2021.B01001", "acs/acs1", "2021")
    assert not matches_filters("ACSDT5Y2021.B01001", "acs/acs1")
    assert not matches_filters("ACSDT1Y2021.B01001", year_filter="2020")
    assert not matches_filters("INVALID.TABLE.ID", year_filter="2020")
    assert matches_filters("INVALID.TABLE.ID")


@pytest.mark.asyncio
async def test_broad_query_probes_every_term_then_truncates():
    search = FakeSearch({
        "income": qualified(*[f"ACSDT1Y2023.B190{n:02d}" for n in range(12)]),
        "employment": qualified("ACSDT1Y2023.B23001", "ACSDT1Y2023.B23025"),
        "industry": qualified("ACSDT1Y2023.C24030"),
        "occupation": qualified("ACSDT1Y2023.C24010"),
        "business": qualified("ACSDT1Y2023.B24080"),
    })
    aggregator = build(search)

    results = await aggregator.search("economics", cap=5)

    assert [entity.id for entity in results] == [f"ACSDT1Y2023.B190{n:02d}" for n in range(5)]
    for term in ["income", "employment", "industry", "occupation", "business"]:
        assert term in search.terms


@pytest.mark.asyncio
async def test_non_broad_query_stops_at_threshold():
    search = FakeSearch({
        "households": qualified(*[f"ACSDT1Y2023.B110{n:02d}" for n in range(10)]),
        "household": qualified("ACSDT1Y2023.B25010"),
    })
    aggregator = build(search, multiplier=2.0)

    results = await aggregator.search("households", cap=3)

    assert len(results) == 3
    # Threshold (6) was reached on the first term
    assert search.terms == ["households"]


@pytest.mark.asyncio
async def test_dedup_across_terms_keeps_first_seen_order():
    search = FakeSearch({
        "households": qualified("ACSDT1Y2023.B11001", "ACSDT1Y2023.B11005"),
        "household": qualified("ACSDT1Y2023.B11005", "ACSDT1Y2023.B25010"),
    })
    aggregator = build(search)

    results = await aggregator.search("households")

    assert [entity.id for entity in results] == [
        "ACSDT1Y2023.B11001",
        "ACSDT1Y2023.B11005",
        "ACSDT1Y2023.B25010",
    ]


@pytest.mark.asyncio
async def test_bare_codes_are_resolved_and_unresolvable_dropped():
    search = FakeSearch({"poverty": bare("B17001", "B17001", "S1701")})
    probe = AcceptingProbe(codes={"B17001"})
    aggregator = build(search, probe)

    results = await aggregator.search("poverty")

    # S1701 is unknown under every prefix and year and is dropped
    assert [entity.id for entity in results] == ["ACSDT1Y2023.B17001"]
    assert results[0].bare_code == "B17001"
    assert probe.calls.count("ACSDT1Y2023.B17001") == 1
    assert any(call.endswith(".S1701") for call in probe.calls)


@pytest.mark.asyncio
async def test_failing_term_is_skipped():
    class FailingSearch(FakeSearch):
        async def search_page(self, term: str, offset: int, limit: int) -> List[CandidateEntity]:
            if term == "employment":
                self.calls.append((term, offset, limit))
                raise UpstreamFetchError("Server error 503 after 3 attempts", provider="CENSUS_SEARCH", status_code=503)
            return await super().search_page(term, offset, limit)

    search = FailingSearch({
        "income": qualified("ACSDT1Y2023.B19013"),
        "industry": qualified("ACSDT1Y2023.C24030"),
    })

    results = await build(search).search("economics", cap=5)

    assert [entity.id for entity in results] == ["ACSDT1Y2023.B19013", "ACSDT1Y2023.C24030"]
    assert search.terms == ["income", "employment", "industry", "occupation", "business", "economic"]


@pytest.mark.asyncio
async def test_filters_apply_to_qualified_hits():
    search = FakeSearch({
        "income": qualified("ACSDT1Y2021.B19013", "ACSDT5Y2021.B19013", "ACSDT1Y2020.B19013"),
    })
    aggregator = build(search)

    results = await aggregator.search("income", dataset_filter="acs/acs1", year_filter="2021")

    assert [entity.id for entity in results] == ["ACSDT1Y2021.B19013"]


@pytest.mark.asyncio
async def test_pages_until_short_page():
    search = FakeSearch({"age": qualified(*[f"ACSDT1Y2023.B010{n:02d}" for n in range(5)])})
    aggregator = build(search, page_size=2)

    results = await aggregator.search("age")

    assert len(results) == 5
    assert [offset for term, offset, _ in search.calls if term == "age"] == [0, 2, 4]


@pytest.mark.asyncio
async def test_cap_is_a_hard_ceiling_without_early_exit():
    search = FakeSearch({"rent": qualified(*[f"ACSDT1Y2023.B250{n:02d}" for n in range(8)])})
    aggregator = build(search, multiplier=1.0)

    results = await aggregator.search("rent", cap=4)

    assert len(results) == 4


@pytest.mark.asyncio
async def test_census_reporter_search_end_to_end(settings):
    server = MockCensusServer(table_routes({
        "ACSDT1Y2023.B01001": metadata_body("SEX BY AGE", "2023"),
        "ACSDT5Y2023.B01002": metadata_body("MEDIAN AGE BY SEX", "2023"),
    }))
    server.route(REPORTER_SEARCH_PATH, reporter_hits("B01001", "B01001", "B01002", "B99999"))

    async with server.client() as client:
        provider = CensusReporterProvider(client=client, settings=settings)
        resolver = IdentifierResolver(CensusProvider(client=client, settings=settings), settings.probe_years)
        aggregator = SearchAggregator(provider, resolver, page_size=50)
        results = await aggregator.search("age", cap=10)

    assert [entity.id for entity in results] == ["ACSDT1Y2023.B01001", "ACSDT5Y2023.B01002"]
    assert results[0].metadata["tableName"] == "Table B01001"
    # One search request, reused for any further pages
    assert len([r for r in server.requests if r.url.path == REPORTER_SEARCH_PATH]) == 1
    assert "ACSDT1Y2019.B99999" in server.ids(METADATA_PATH)


@pytest.mark.asyncio
async def test_census_table_search_returns_qualified_hits(settings):
    server = MockCensusServer({
        CENSUS_SEARCH_PATH: {
            "response": {
                "tables": {
                    "tables": [
                        {"id": "ACSDT1Y2022.B19013", "title": "MEDIAN HOUSEHOLD INCOME", "vintage": "2022"},
                        {"id": "ACSST5Y2022.S1901", "title": "INCOME IN THE PAST 12 MONTHS"},
                    ]
                }
            }
        }
    })

    async with server.client() as client:
        provider = CensusSearchProvider(client=client, settings=settings)
        resolver = IdentifierResolver(CensusProvider(client=client, settings=settings), settings.probe_years)
        aggregator = SearchAggregator(provider, resolver, page_size=50)
        results = await aggregator.search("median income")

    assert [entity.id for entity in results] == ["ACSDT1Y2022.B19013", "ACSST5Y2022.S1901"]
    assert results[0].metadata == {"vintage": "2022"}
    params = server.params(CENSUS_SEARCH_PATH)[0]
    assert params["q"] == "median income"
    assert params["from"] == "0"
    # Qualified hits are never probed
    assert server.ids(METADATA_PATH) == []
