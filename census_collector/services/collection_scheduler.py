"""
Batched, bounded-concurrency collection of tables.

Identifiers are processed in fixed-size batches. Inside a batch every
identifier fetches metadata and data concurrently and produces exactly one
record (table or error); a failure in one identifier never touches its
siblings. Batches run one after another with a fixed pause in between, and
the item cap is only checked between batches so a started batch always
finishes.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Set, Union

from ..exceptions import InvalidRecordInputError
from ..models import (
    CandidateEntity,
    ErrorRecord,
    OutputRecord,
    RunSummary,
    TableRecord,
    merge_table,
)
from .output_guard import OutputGuard
from .record_mapper import RecordMapper

logger = logging.getLogger(__name__)

PROCESSING_ERROR = "Failed to process table"

CollectedRecord = Union[OutputRecord, ErrorRecord]
RecordCallback = Callable[[CollectedRecord], Awaitable[None]]


class TableSource(Protocol):
    def table_viewer_url(self, table_id: str) -> str:
        ...

    async def fetch_table_metadata(self, table_id: str) -> TableRecord:
        ...

    async def fetch_table_data(self, table_id: str, geography: Optional[str] = None) -> TableRecord:
        ...


@dataclass(frozen=True)
class CollectionTarget:
    """One identifier to collect, with the search hit it came from if any."""

    identifier: str
    entity: Optional[CandidateEntity] = None


class SeenIdentifiers:
    """Identifiers already scheduled in one run."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def claim(self, identifier: str) -> bool:
        """Mark an identifier as taken; False if it was already taken."""
        if identifier in self._seen:
            return False
        self._seen.add(identifier)
        return True

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._seen

    def __len__(self) -> int:
        return len(self._seen)


class CollectionScheduler:
    """Fetches, maps and size-guards tables in batches."""

    def __init__(
        self,
        source: TableSource,
        mapper: RecordMapper,
        guard: OutputGuard,
        batch_size: int = 20,
        batch_delay_seconds: float = 0.5,
        geography: Optional[str] = None,
    ):
        self.source = source
        self.mapper = mapper
        self.guard = guard
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.geography = geography

    def _fallback_metadata(self, identifier: str, entity: CandidateEntity) -> TableRecord:
        hints = entity.metadata or {}
        return TableRecord(
            id=identifier,
            title=entity.title or entity.description or identifier,
            description=entity.description,
            vintage=hints.get("vintage") or None,
            survey=hints.get("program") or None,
            universe=hints.get("universe") or None,
            url=entity.url or self.source.table_viewer_url(identifier),
            metadata=dict(hints),
        )

    async def _process(self, target: CollectionTarget) -> CollectedRecord:
        identifier = target.identifier

        metadata, data = await asyncio.gather(
            self.source.fetch_table_metadata(identifier),
            self.source.fetch_table_data(identifier, self.geography),
            return_exceptions=True,
        )

        if isinstance(metadata, BaseException):
            if target.entity is None or not isinstance(metadata, Exception):
                raise metadata
            # Some table families (e.g. time series) refuse metadata requests
            logger.warning(
                f"Metadata fetch failed for {identifier}, using search result as fallback: {metadata}"
            )
            metadata = self._fallback_metadata(identifier, target.entity)

        if isinstance(data, BaseException):
            if not isinstance(data, Exception):
                raise data
            logger.warning(f"Data unavailable for {identifier}: {data}")
            data = None

        merged = merge_table(identifier, metadata, data)
        return self.guard.admit(self.mapper.map(merged))

    async def _run_batch(
        self,
        batch: List[CollectionTarget],
        on_record: RecordCallback,
        summary: RunSummary,
    ) -> None:
        # Errors that must end the run are parked per identifier and raised once
        # the whole batch has settled
        fatal: List[Optional[BaseException]] = [None] * len(batch)

        async def run_one(index: int, target: CollectionTarget) -> None:
            try:
                record = await self._process(target)
            except InvalidRecordInputError as e:
                fatal[index] = e
                return
            except Exception as e:
                message = str(e) or e.__class__.__name__
                logger.error(f"Failed to process table {target.identifier}: {message}")
                record = ErrorRecord.for_identifier(
                    PROCESSING_ERROR,
                    message,
                    table_id=target.identifier,
                    entity_id=target.entity.id if target.entity else None,
                )

            try:
                await on_record(record)
            except Exception as e:
                fatal[index] = e
                return

            summary.total_pushed += 1
            if isinstance(record, ErrorRecord):
                summary.total_errors += 1

        async with asyncio.TaskGroup() as group:
            for index, target in enumerate(batch):
                group.create_task(run_one(index, target))

        summary.batches += 1
        for failure in fatal:
            if failure is not None:
                raise failure

    async def collect(
        self,
        targets: Iterable[CollectionTarget],
        on_record: RecordCallback,
        cap: Optional[int] = None,
        concurrency_limit: Optional[int] = None,
        seen: Optional[SeenIdentifiers] = None,
    ) -> RunSummary:
        """Collect every target, pushing one record per unique identifier.

        Args:
            targets: Identifiers to collect, in order
            on_record: Awaited once per emitted record
            cap: Maximum records to emit in this run
            concurrency_limit: Batch size override
            seen: Dedup context to share with an enclosing run, fresh by default

        Returns:
            Counters for the run
        """
        seen = seen if seen is not None else SeenIdentifiers()
        batch_size = concurrency_limit or self.batch_size
        pending = list(targets)
        summary = RunSummary()
        started = time.monotonic()

        cursor = 0
        while cursor < len(pending):
            if cap is not None and summary.total_pushed >= cap:
                logger.info(f"Reached maxItems={cap}, not scheduling further batches")
                break

            room = batch_size if cap is None else min(batch_size, cap - summary.total_pushed)
            batch: List[CollectionTarget] = []
            while cursor < len(pending) and len(batch) < room:
                target = pending[cursor]
                cursor += 1
                if not target.identifier:
                    logger.warning("Target missing identifier, skipping")
                    continue
                if not seen.claim(target.identifier):
                    summary.duplicates_skipped += 1
                    continue
                batch.append(target)

            if not batch:
                continue

            if summary.batches and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

            logger.info(f"Processing batch {summary.batches + 1} ({len(batch)} tables)")
            summary.total_fetched += len(batch)
            await self._run_batch(batch, on_record, summary)

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        return summary
