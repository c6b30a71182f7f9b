"""Keeps emitted records under the sink's per-item size limit.

Degradation is staged: drop ``variables`` first, then ``data``, re-measuring
after each step. ``data`` is usually the larger field but not always, so
dropping both at once would throw away content that might have fit.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from ..models import ErrorRecord, OutputRecord
from .dataset_sink import encode_record

logger = logging.getLogger(__name__)

MB = 1024 * 1024
TOO_LARGE_ERROR = "Table too large to process"


def serialized_size(payload: Dict[str, Any]) -> int:
    """UTF-8 byte length of the line a sink stores for this payload."""
    return len(encode_record(payload).encode("utf-8"))


def record_size(record: OutputRecord) -> int:
    return serialized_size(record.to_output())


class OutputGuard:
    """Admits, shrinks or rejects records against a byte budget."""

    def __init__(self, budget_bytes: int):
        self.budget_bytes = budget_bytes

    def admit(self, record: OutputRecord, budget_bytes: Optional[int] = None) -> Union[OutputRecord, ErrorRecord]:
        budget = self.budget_bytes if budget_bytes is None else budget_bytes
        original_size = record_size(record)
        if original_size <= budget:
            return record

        logger.warning(
            f"Table {record.table_id} exceeds size limit ({original_size / MB:.2f} MB), "
            f"attempting to push without variables field"
        )

        current, current_size = record, original_size
        steps = (
            ("variables", {"variables": None, "variables_omitted": f"Variables field omitted due to size limit (exceeds {budget / MB:.2f} MB)"}),
            ("data", {"data": None, "data_omitted": "Data field omitted due to size limit", "data_size_mb": f"{original_size / MB:.2f}"}),
        )

        for field_name, update in steps:
            if current_size <= budget:
                break
            if getattr(current, field_name) is None:
                continue

            degraded = current.model_copy(update=update)
            degraded_size = record_size(degraded)
            # Markers must never make the record bigger than what they replace
            if degraded_size >= current_size:
                continue

            logger.warning(
                f"Dropped {field_name} from {record.table_id}: "
                f"{current_size / MB:.2f} MB -> {degraded_size / MB:.2f} MB"
            )
            current, current_size = degraded, degraded_size

        if current_size <= budget:
            return current

        logger.error(
            f"Table {record.table_id} is too large even after removing variables and data "
            f"({current_size / MB:.2f} MB), skipping entirely"
        )
        return ErrorRecord.for_identifier(
            TOO_LARGE_ERROR,
            (
                f"Data item too large (original size: {original_size} bytes, "
                f"after removing variables and data: {current_size} bytes, "
                f"limit: {budget} bytes)."
            ),
            table_id=record.table_id,
        )
