from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from ..config import Settings
from ..datasets import geography_code
from ..exceptions import DataNotAvailableError, UpstreamFetchError
from ..models import CandidateEntity, TableRecord
from .base import BaseProvider
from .decoders import decode_census_search, decode_data, decode_metadata

logger = logging.getLogger(__name__)


class CensusProvider(BaseProvider):
    """data.census.gov table API.

    Endpoints used:
    1. ``/search/metadata/table?id=`` for titles, universe, dataset vintage and variables
    2. ``/access/data/table?id=`` for the table values

    Both require a fully-qualified table id (``ACSDT1Y2021.B01001``); most
    bare codes are rejected. No API key required.

    A successful ``probe_metadata`` keeps the decoded table so the following
    ``fetch_table_metadata`` for the same id is served without a request.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        backoff_factor: Optional[float] = None,
    ):
        super().__init__(client, settings, backoff_factor)
        self._probed: Dict[str, TableRecord] = {}

    @property
    def provider_name(self) -> str:
        return "CENSUS"

    @property
    def base_url(self) -> str:
        return self.settings.census_base_url.rstrip("/")

    def table_viewer_url(self, table_id: str) -> str:
        return f"{self.settings.census_viewer_url.rstrip('/')}?tid={table_id}"

    async def fetch_table_metadata(self, table_id: str) -> TableRecord:
        """Fetch and decode table metadata.

        Raises:
            UpstreamFetchError: On a non-success status or an unparseable body
            DataNotAvailableError: If the body is not a JSON object
        """
        probed = self._probed.pop(table_id, None)
        if probed is not None:
            logger.debug(f"Using metadata already fetched while resolving {table_id}")
            return probed

        url = f"{self.base_url}/search/metadata/table"
        logger.info(f"Fetching table metadata for {table_id}")
        response = await self._get_with_retry(url, params={"id": table_id})
        payload = self._parse_json_safe(response)
        if not isinstance(payload, dict):
            raise DataNotAvailableError(
                f"Metadata response for {table_id} is not an object", provider=self.provider_name
            )
        return self._metadata_record(table_id, payload)

    def _metadata_record(self, table_id: str, payload: Dict) -> TableRecord:
        decoded = decode_metadata(payload)
        if not decoded.recognized:
            logger.debug(f"Metadata for {table_id} has no metadataContent, using body as-is")

        return TableRecord(
            id=table_id,
            title=decoded.title,
            description=decoded.description,
            universe=decoded.universe,
            survey=decoded.survey,
            vintage=decoded.vintage,
            url=self.table_viewer_url(table_id),
            metadata=decoded.content,
        )

    async def probe_metadata(self, table_id: str) -> bool:
        """True when the metadata endpoint knows this exact identifier.

        A probe miss is an expected outcome, never an error.
        """
        url = f"{self.base_url}/search/metadata/table"
        try:
            response = await self._get_with_retry(url, params={"id": table_id})
            payload = self._parse_json_safe(response)
        except UpstreamFetchError as e:
            logger.debug(f"Probe miss for {table_id}: {e.message}")
            return False
        if not decode_metadata(payload).recognized:
            return False
        self._probed[table_id] = self._metadata_record(table_id, payload)
        return True

    async def fetch_table_data(self, table_id: str, geography: Optional[str] = None) -> TableRecord:
        """Fetch the table values.

        Args:
            table_id: Fully-qualified table id
            geography: Optional geography level, forwarded as a summary-level selector

        Raises:
            UpstreamFetchError: On a non-success status or an unparseable body
        """
        url = f"{self.base_url}/access/data/table"
        params: Dict[str, str] = {"id": table_id}
        summary_level = geography_code(geography)
        if summary_level:
            params["g"] = summary_level

        logger.info(f"Fetching table data for {table_id}")
        response = await self._get_with_retry(url, params=params)
        decoded = decode_data(self._parse_json_safe(response))

        return TableRecord(
            id=decoded.table_id or table_id,
            data=decoded.data if decoded.data is not None else [],
            metadata=decoded.uris,
        )


class CensusSearchProvider(BaseProvider):
    """data.census.gov table search.

    Hits already carry fully-qualified identifiers, so nothing needs probing.
    Paged by offset through ``size``/``from``.
    """

    @property
    def provider_name(self) -> str:
        return "CENSUS_SEARCH"

    async def search_page(self, term: str, offset: int, limit: int) -> List[CandidateEntity]:
        url = f"{self.settings.census_base_url.rstrip('/')}/search"
        params = {"q": term, "services": "search", "size": str(limit), "from": str(offset)}
        logger.info(f"Searching data.census.gov for '{term}' (offset {offset})")
        response = await self._get_with_retry(url, params=params)
        entities = decode_census_search(self._parse_json_safe(response))
        return entities[:limit]
