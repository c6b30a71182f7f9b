"""Destinations for emitted records.

A run pushes plain dicts (already stripped of null fields) one at a time, in
completion order. Sinks must accept records from concurrently settling
identifiers; each push is self-contained.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, TextIO, Union

logger = logging.getLogger(__name__)


def encode_record(record: Dict[str, Any]) -> str:
    """Compact JSON for one record, exactly as stored."""
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


class RecordSink(Protocol):
    async def push(self, record: Dict[str, Any]) -> None:
        ...


class MemorySink:
    """Keeps every pushed record in a list."""

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    async def push(self, record: Dict[str, Any]) -> None:
        self.records.append(record)

    @property
    def errors(self) -> List[Dict[str, Any]]:
        return [record for record in self.records if "error" in record]

    @property
    def tables(self) -> List[Dict[str, Any]]:
        return [record for record in self.records if "error" not in record]


class JsonlFileSink:
    """Appends one JSON document per line, flushed after every record.

    Accepts a path (opened lazily, closed by ``close``) or an already open
    text stream such as stdout, which is left open.
    """

    def __init__(self, target: Union[str, Path, TextIO]):
        self._path: Optional[Path] = None
        self._stream: Optional[TextIO] = None
        self._owns_stream = False
        self.count = 0

        if isinstance(target, (str, Path)):
            self._path = Path(target)
        else:
            self._stream = target

    def _open(self) -> TextIO:
        if self._stream is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._stream = self._path.open("a", encoding="utf-8")
            self._owns_stream = True
            logger.info(f"Writing records to {self._path}")
        return self._stream

    async def push(self, record: Dict[str, Any]) -> None:
        stream = self._open()
        stream.write(encode_record(record) + "\n")
        stream.flush()
        self.count += 1

    def close(self) -> None:
        if self._owns_stream and self._stream is not None:
            self._stream.close()
            self._stream = None
            self._owns_stream = False
