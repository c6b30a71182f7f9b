from __future__ import annotations

import logging
from typing import Dict, List

from ..models import CandidateEntity
from .base import BaseProvider
from .decoders import decode_census_reporter_search

logger = logging.getLogger(__name__)


class CensusReporterProvider(BaseProvider):
    """Census Reporter table search (api.censusreporter.org).

    Census Reporter offers the keyword search data.census.gov lacks, but it
    answers with bare table codes (``B01001``) that still need qualifying
    against a dataset and year. The endpoint returns every hit in one response,
    so offset paging is done client side over a per-term memo.
    """

    @property
    def provider_name(self) -> str:
        return "CENSUS_REPORTER"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._results: Dict[str, List[CandidateEntity]] = {}

    async def _search_all(self, term: str) -> List[CandidateEntity]:
        if term not in self._results:
            url = f"{self.settings.census_reporter_url.rstrip('/')}/table/search"
            logger.info(f"Fetching search results from Census Reporter for '{term}'")
            response = await self._get_with_retry(url, params={"q": term})
            entities = decode_census_reporter_search(self._parse_json_safe(response))

            # Column hits repeat their table code
            unique: Dict[str, CandidateEntity] = {}
            for entity in entities:
                unique.setdefault(entity.bare_code, entity)
            self._results[term] = list(unique.values())
            logger.info(f"Census Reporter returned {len(self._results[term])} tables for '{term}'")
        return self._results[term]

    async def search_page(self, term: str, offset: int, limit: int) -> List[CandidateEntity]:
        entities = await self._search_all(term)
        return entities[offset:offset + limit]
