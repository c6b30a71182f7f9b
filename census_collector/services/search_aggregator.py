"""
Multi-term, paginated table search.

Runs every probe term from the QueryExpander against the configured search
collaborator, qualifies bare codes through the IdentifierResolver, filters
qualified hits by dataset/year and deduplicates on the qualified identifier
across all terms. Results keep the order in which tables were first found;
the upstream endpoints don't expose a relevance score consistently enough to
sort on. A term whose search request fails is logged and treated as
exhausted; the remaining terms still run.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Set

from ..datasets import prefixes_for_dataset
from ..exceptions import DataProviderError
from ..models import CandidateEntity, CandidateIdentifier
from .identifier_resolver import IdentifierResolver
from .query_expander import QueryExpander

logger = logging.getLogger(__name__)


class SearchProvider(Protocol):
    async def search_page(self, term: str, offset: int, limit: int) -> List[CandidateEntity]:
        ...


def matches_filters(
    identifier: str,
    dataset_filter: Optional[str] = None,
    year_filter: Optional[str] = None,
) -> bool:
    """Check a qualified identifier's prefix/year against the run filters.

    Identifiers that don't follow the ``{prefix}{year}.{code}`` scheme pass
    only when no filter is set.
    """
    if not dataset_filter and not year_filter:
        return True

    parsed = CandidateIdentifier.parse(identifier)
    if parsed is None:
        return False
    if dataset_filter and parsed.dataset_prefix not in prefixes_for_dataset(dataset_filter):
        return False
    if year_filter and parsed.year != year_filter:
        return False
    return True


class SearchAggregator:
    """Turns a free-text query into a bounded list of qualified candidates."""

    def __init__(
        self,
        provider: SearchProvider,
        resolver: IdentifierResolver,
        expander: Optional[QueryExpander] = None,
        page_size: int = 50,
        early_exit_multiplier: float = 2.0,
    ):
        self.provider = provider
        self.resolver = resolver
        self.expander = expander or QueryExpander()
        self.page_size = page_size
        self.early_exit_multiplier = early_exit_multiplier

    def _threshold(self, cap: Optional[int]) -> Optional[int]:
        if cap is None:
            return None
        return max(cap, int(cap * self.early_exit_multiplier))

    async def _qualify(
        self,
        entity: CandidateEntity,
        dataset_filter: Optional[str],
        year_filter: Optional[str],
    ) -> Optional[CandidateEntity]:
        if entity.id:
            if matches_filters(entity.id, dataset_filter, year_filter):
                return entity
            logger.debug(f"Dropping {entity.id}: outside dataset/year filter")
            return None

        if not entity.bare_code:
            return None

        resolved = await self.resolver.resolve(entity.bare_code, dataset_filter, year_filter)
        if resolved is None:
            return None
        return entity.with_identifier(str(resolved))

    async def search(
        self,
        query: str,
        cap: Optional[int] = None,
        dataset_filter: Optional[str] = None,
        year_filter: Optional[str] = None,
    ) -> List[CandidateEntity]:
        """Collect candidates for a query.

        Args:
            query: Free-text query
            cap: Hard ceiling on returned candidates
            dataset_filter: Dataset code restricting prefixes
            year_filter: Four-digit year restricting identifiers

        Returns:
            Unique candidates with qualified ids, in discovery order
        """
        terms = self.expander.expand(query)
        broad = self.expander.is_broad_topic(query)
        threshold = self._threshold(cap)

        results: List[CandidateEntity] = []
        seen_ids: Set[str] = set()
        seen_codes: Set[str] = set()

        for term in terms:
            # Broad topics favour completeness: every expansion term is searched
            if threshold is not None and len(results) >= threshold and not broad:
                logger.info(f"Collected {len(results)} candidates, skipping remaining probe terms")
                break

            offset = 0
            while True:
                try:
                    page = await self.provider.search_page(term, offset, self.page_size)
                except DataProviderError as e:
                    # A failing term ends its own paging only
                    logger.error(f"Search for probe term '{term}' failed at offset {offset}: {e.message}")
                    break

                for entity in page:
                    if not broad and threshold is not None and len(results) >= threshold:
                        break
                    # The same bare code resolves the same way within one call
                    if entity.bare_code and not entity.id:
                        if entity.bare_code in seen_codes:
                            continue
                        seen_codes.add(entity.bare_code)

                    qualified = await self._qualify(entity, dataset_filter, year_filter)
                    if qualified is None or qualified.id in seen_ids:
                        continue
                    seen_ids.add(qualified.id)
                    results.append(qualified)

                if len(page) < self.page_size:
                    break
                if threshold is not None and len(results) >= threshold:
                    break
                offset += self.page_size

            logger.info(f"Probe term '{term}': {len(results)} unique candidates so far")

        if cap is not None and len(results) > cap:
            results = results[:cap]

        logger.info(f"Search for '{query}' produced {len(results)} candidates from {len(terms)} term(s)")
        return results
