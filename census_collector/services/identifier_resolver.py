"""
Bare table code -> fully-qualified identifier resolution.

Census Reporter and user input hand us codes like ``B01001`` that the
data.census.gov endpoints reject. The resolver guesses ``{prefix}{year}.{code}``
combinations and keeps the first one the metadata endpoint recognizes. This
is a probe, not a search: it stops at the first hit.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Tuple

from ..datasets import prefixes_for_dataset, probe_years
from ..models import CandidateIdentifier

logger = logging.getLogger(__name__)


class MetadataProbe(Protocol):
    async def probe_metadata(self, table_id: str) -> bool:
        ...


class IdentifierResolver:
    """Resolves bare codes by probing dataset/year combinations."""

    def __init__(self, probe: MetadataProbe, recent_years: List[str]):
        self.probe = probe
        self.recent_years = list(recent_years)
        self._memo: Dict[Tuple[str, Optional[str], Optional[str]], Optional[CandidateIdentifier]] = {}

    def candidates(
        self,
        bare_code: str,
        dataset_filter: Optional[str] = None,
        year_filter: Optional[str] = None,
    ) -> List[CandidateIdentifier]:
        """Every identifier the resolver would try, in probe order."""
        return [
            CandidateIdentifier(prefix, year, bare_code)
            for prefix in prefixes_for_dataset(dataset_filter)
            for year in probe_years(year_filter, self.recent_years)
        ]

    async def resolve(
        self,
        bare_code: str,
        dataset_filter: Optional[str] = None,
        year_filter: Optional[str] = None,
    ) -> Optional[CandidateIdentifier]:
        """First candidate identifier the metadata endpoint accepts, None if none do.

        None is an ordinary outcome; callers decide whether to drop the code
        or use it bare.
        """
        bare_code = bare_code.strip()
        key = (bare_code.upper(), dataset_filter, year_filter)
        if key in self._memo:
            return self._memo[key]

        tried = 0
        resolved: Optional[CandidateIdentifier] = None
        for candidate in self.candidates(bare_code, dataset_filter, year_filter):
            tried += 1
            if await self.probe.probe_metadata(str(candidate)):
                resolved = candidate
                logger.info(f"Resolved {bare_code} -> {candidate} after {tried} probe(s)")
                break

        if resolved is None:
            logger.info(f"Could not resolve {bare_code} after {tried} probes")

        self._memo[key] = resolved
        return resolved
