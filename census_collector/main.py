"""Run orchestration: validates input, builds collaborators and drives one collection run."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import Settings, get_settings
from .exceptions import ConfigurationError, ValidationError
from .models import CandidateIdentifier, CollectionInput, RunSummary
from .providers.census import CensusProvider, CensusSearchProvider
from .providers.census_reporter import CensusReporterProvider
from .services.collection_scheduler import (
    CollectedRecord,
    CollectionScheduler,
    CollectionTarget,
    SeenIdentifiers,
)
from .services.dataset_sink import RecordSink
from .services.http_pool import close_http_pool
from .services.identifier_resolver import IdentifierResolver
from .services.output_guard import OutputGuard
from .services.query_expander import QueryExpander
from .services.record_mapper import RecordMapper
from .services.search_aggregator import SearchAggregator, SearchProvider

logger = logging.getLogger(__name__)


def parse_input(raw: Union[CollectionInput, Dict[str, Any]]) -> CollectionInput:
    if isinstance(raw, CollectionInput):
        return raw
    try:
        return CollectionInput.model_validate(raw or {})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid input: {first.get('msg')}", field=field or None)


def validate_input(run_input: CollectionInput) -> None:
    """Exactly one of searchQuery and tableId must be present.

    Raises:
        ValidationError: When neither or both are supplied
    """
    if not run_input.search_query and not run_input.table_id:
        raise ValidationError(
            "searchQuery or tableId is required. Please provide a search query or a table id.",
            field="searchQuery",
        )
    if run_input.search_query and run_input.table_id:
        raise ValidationError(
            "searchQuery and tableId are mutually exclusive, provide only one.",
            field="tableId",
        )


def effective_max_items(max_items: Optional[int], settings: Settings) -> Optional[int]:
    """Apply the plan ceiling to the requested item count.

    Free runs are silently lowered to ``free_max_items`` (with a warning).
    Paid runs may ask for up to ``paid_max_items``; no request means no cap.

    Raises:
        ValidationError: If a paid run asks for more than ``paid_max_items``
    """
    if not settings.user_is_paying:
        if max_items is None:
            logger.warning(
                f"Free user did not specify maxItems. Automatically limiting to "
                f"{settings.free_max_items} items. Upgrade to a paid plan to process "
                f"up to {settings.paid_max_items:,} items."
            )
            return settings.free_max_items
        if max_items > settings.free_max_items:
            logger.warning(
                f"Free user specified maxItems={max_items}, which exceeds the free plan limit "
                f"of {settings.free_max_items}. Automatically limiting to {settings.free_max_items} items."
            )
            return settings.free_max_items
        return max_items

    if max_items is not None and max_items > settings.paid_max_items:
        raise ValidationError(
            f"maxItems cannot exceed {settings.paid_max_items:,}.",
            field="maxItems",
            details={"max_allowed": settings.paid_max_items},
        )
    return max_items


def build_search_provider(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> SearchProvider:
    """Pick the search collaborator named by SEARCH_BACKEND.

    Raises:
        ConfigurationError: For an unknown backend name
    """
    if settings.search_backend == "census_reporter":
        return CensusReporterProvider(client=client, settings=settings)
    if settings.search_backend == "census":
        return CensusSearchProvider(client=client, settings=settings)
    raise ConfigurationError(
        f"Unknown search backend '{settings.search_backend}'",
        details={"search_backend": settings.search_backend},
    )


async def resolve_direct_identifier(
    table_id: str,
    resolver: IdentifierResolver,
    dataset: Optional[str] = None,
    year: Optional[str] = None,
) -> str:
    """Turn a user-supplied tableId into the identifier to collect.

    Qualified ids are used as given. Bare codes are probed and fall back to
    the bare code when nothing resolves; anything else is passed through and
    left for the upstream to reject.
    """
    table_id = table_id.strip()
    if CandidateIdentifier.parse(table_id) is not None:
        return table_id
    if "." in table_id:
        logger.info(f"Table id {table_id} is not in prefix+year form, using it as-is")
        return table_id

    resolved = await resolver.resolve(table_id, dataset, year)
    if resolved is None:
        logger.warning(f"Could not resolve {table_id} to a full table id, trying it as-is")
        return table_id
    return str(resolved)


def _log_summary(summary: RunSummary, searched: bool, candidates: int) -> None:
    logger.info(
        f"Run finished: fetched={summary.total_fetched} pushed={summary.total_pushed} "
        f"errors={summary.total_errors} duplicates={summary.duplicates_skipped} "
        f"batches={summary.batches} duration={summary.duration_ms}ms"
    )
    if summary.total_pushed > 0:
        logger.info(f"Collection complete! Records processed: {summary.total_pushed}")
    elif searched and candidates == 0:
        logger.warning("Search query did not return any table entities from the Census Bureau.")
        logger.info('Tip: Try different search terms (e.g., "population", "income", "housing", "education").')
    elif searched:
        logger.warning(f"Found {candidates} entities but none could be processed")
        logger.info("Tip: Try adjusting the dataset or year filters to refine your search results.")


async def run_collection(
    raw_input: Union[CollectionInput, Dict[str, Any]],
    sink: RecordSink,
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> RunSummary:
    """Execute one collection run end to end.

    Args:
        raw_input: Run input (model or the raw JSON object)
        sink: Destination for every emitted record
        settings: Collector settings, the environment settings by default
        client: HTTP client, the shared pool client by default

    Returns:
        Counters for the run

    Raises:
        ValidationError: For invalid input; nothing is emitted
        ConfigurationError: For an unknown search backend
        InvalidRecordInputError: If a table without identifier reaches the mapper
    """
    settings = settings or get_settings()
    run_input = parse_input(raw_input)
    validate_input(run_input)
    cap = effective_max_items(run_input.max_items, settings)

    logger.info(
        "Starting US Census Bureau data collection: "
        f"query={run_input.search_query!r} tableId={run_input.table_id!r} "
        f"dataset={run_input.dataset} geography={run_input.geography} year={run_input.year} "
        f"maxItems={cap if cap is not None else 'unlimited'} "
        f"plan={'paid' if settings.user_is_paying else 'free'}"
    )

    census = CensusProvider(client=client, settings=settings)
    resolver = IdentifierResolver(census, settings.probe_years)
    scheduler = CollectionScheduler(
        census,
        RecordMapper(settings.census_viewer_url),
        OutputGuard(settings.max_item_bytes),
        batch_size=settings.batch_size,
        batch_delay_seconds=settings.batch_delay_seconds,
        geography=run_input.geography,
    )

    async def emit(record: CollectedRecord) -> None:
        await sink.push(record.to_output())

    started = time.monotonic()
    try:
        targets: List[CollectionTarget]
        searched = run_input.search_query is not None
        if searched:
            aggregator = SearchAggregator(
                build_search_provider(settings, client),
                resolver,
                expander=QueryExpander(),
                page_size=settings.search_page_size,
                early_exit_multiplier=settings.early_exit_multiplier,
            )
            entities = await aggregator.search(
                run_input.search_query,
                cap=cap,
                dataset_filter=run_input.dataset,
                year_filter=run_input.year,
            )
            targets = [CollectionTarget(entity.id, entity) for entity in entities]
        else:
            identifier = await resolve_direct_identifier(
                run_input.table_id, resolver, run_input.dataset, run_input.year
            )
            targets = [CollectionTarget(identifier)]

        summary = await scheduler.collect(targets, emit, cap=cap, seen=SeenIdentifiers())
        summary.duration_ms = int((time.monotonic() - started) * 1000)
        _log_summary(summary, searched, len(targets))
        return summary
    finally:
        if client is None:
            await close_http_pool()
