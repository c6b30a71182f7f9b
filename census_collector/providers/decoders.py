"""Decoders for the upstream response shapes.

data.census.gov and Census Reporter are not consistent about where they put
things: the same metadata can arrive wrapped in ``response`` or at the top
level, search hits can sit under several keys. Each decoder below tags the
shape it recognized and reads fields through an explicit priority list of
paths, first hit wins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models import CandidateEntity

Path = Tuple[str, ...]


def dig(obj: Any, path: Path) -> Any:
    """Follow a key path through nested dicts, None when any step is missing."""
    current = obj
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_value(sources: Sequence[Any], paths: Sequence[Path]) -> Any:
    """First non-empty value over every (source, path) pair, sources outermost."""
    for source in sources:
        for path in paths:
            value = dig(source, path)
            if value not in (None, "", [], {}):
                return value
    return None


def as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


# ---------------------------------------------------------------------------
# Metadata endpoint: GET /search/metadata/table?id=
# ---------------------------------------------------------------------------

class MetadataShape(str, Enum):
    WRAPPED = "response.metadataContent"
    TOP_LEVEL = "metadataContent"
    BARE = "bare"


METADATA_CONTENT_PATHS: List[Tuple[MetadataShape, Path]] = [
    (MetadataShape.WRAPPED, ("response", "metadataContent")),
    (MetadataShape.TOP_LEVEL, ("metadataContent",)),
]

TITLE_PATHS: List[Path] = [("title",)]
DESCRIPTION_PATHS: List[Path] = [("description",)]
UNIVERSE_PATHS: List[Path] = [("universe",)]
SURVEY_PATHS: List[Path] = [("dataset", "name"), ("program",)]
VINTAGE_PATHS: List[Path] = [("dataset", "vintage"), ("vintage",)]


@dataclass(frozen=True)
class DecodedMetadata:
    shape: MetadataShape
    content: Dict[str, Any]
    envelope: Dict[str, Any] = field(default_factory=dict)

    @property
    def recognized(self) -> bool:
        """True when the body carried an actual metadata-content object."""
        return self.shape is not MetadataShape.BARE

    def _read(self, paths: List[Path]) -> Optional[str]:
        return as_text(first_value([self.content, self.envelope], paths))

    @property
    def title(self) -> Optional[str]:
        return self._read(TITLE_PATHS)

    @property
    def description(self) -> Optional[str]:
        return self._read(DESCRIPTION_PATHS)

    @property
    def universe(self) -> Optional[str]:
        return self._read(UNIVERSE_PATHS)

    @property
    def survey(self) -> Optional[str]:
        return self._read(SURVEY_PATHS)

    @property
    def vintage(self) -> Optional[str]:
        return self._read(VINTAGE_PATHS)


def decode_metadata(payload: Any) -> DecodedMetadata:
    body = payload if isinstance(payload, dict) else {}
    envelope = body.get("response") if isinstance(body.get("response"), dict) else {}

    for shape, path in METADATA_CONTENT_PATHS:
        content = dig(body, path)
        if isinstance(content, dict):
            return DecodedMetadata(shape=shape, content=content, envelope=envelope)

    return DecodedMetadata(shape=MetadataShape.BARE, content=body, envelope=envelope)


# ---------------------------------------------------------------------------
# Data endpoint: GET /access/data/table?id=
# ---------------------------------------------------------------------------

class DataShape(str, Enum):
    WRAPPED = "response.data"
    TOP_LEVEL = "data"
    EMPTY = "empty"


DATA_PATHS: List[Tuple[DataShape, Path]] = [
    (DataShape.WRAPPED, ("response", "data")),
    (DataShape.TOP_LEVEL, ("data",)),
]

TABLE_ID_PATHS: List[Path] = [("tableId",), ("objectId",)]
URI_KEYS: Tuple[str, ...] = ("dataURI", "metadataURI", "dataAPIURI", "metadataAPIURI")


@dataclass(frozen=True)
class DecodedData:
    shape: DataShape
    data: Any
    table_info: Dict[str, Any]

    @property
    def table_id(self) -> Optional[str]:
        return as_text(first_value([self.table_info], TABLE_ID_PATHS))

    @property
    def uris(self) -> Dict[str, Any]:
        return {key: self.table_info[key] for key in URI_KEYS if self.table_info.get(key)}


def decode_data(payload: Any) -> DecodedData:
    body = payload if isinstance(payload, dict) else {}
    table_info = body.get("response") if isinstance(body.get("response"), dict) else body

    for shape, path in DATA_PATHS:
        data = dig(body, path)
        if data is not None:
            return DecodedData(shape=shape, data=data, table_info=table_info)

    return DecodedData(shape=DataShape.EMPTY, data=None, table_info=table_info)


# ---------------------------------------------------------------------------
# Search endpoints
# ---------------------------------------------------------------------------

# data.census.gov table search, hits carry qualified ids
CENSUS_HIT_LIST_PATHS: List[Path] = [
    ("response", "tables", "tables"),
    ("response", "tables"),
    ("tables", "tables"),
    ("tables",),
    ("results",),
]
CENSUS_HIT_ID_PATHS: List[Path] = [("id",), ("tableId",), ("instanceId",)]
CENSUS_HIT_TITLE_PATHS: List[Path] = [("title",), ("name",)]
CENSUS_HIT_DESCRIPTION_PATHS: List[Path] = [("description",), ("subtitle",)]
CENSUS_HIT_HINT_PATHS: Dict[str, List[Path]] = {
    "vintage": [("vintage",), ("year",), ("dataset", "vintage")],
    "program": [("program",), ("survey",), ("dataset", "name")],
    "universe": [("universe",)],
}


def decode_census_search(payload: Any) -> List[CandidateEntity]:
    hits = first_value([payload], CENSUS_HIT_LIST_PATHS) if isinstance(payload, dict) else payload
    if not isinstance(hits, list):
        return []

    entities: List[CandidateEntity] = []
    for hit in hits:
        if not isinstance(hit, dict):
            continue
        identifier = as_text(first_value([hit], CENSUS_HIT_ID_PATHS))
        if not identifier:
            continue
        hints = {
            name: as_text(first_value([hit], paths))
            for name, paths in CENSUS_HIT_HINT_PATHS.items()
        }
        entities.append(
            CandidateEntity(
                id=identifier,
                title=as_text(first_value([hit], CENSUS_HIT_TITLE_PATHS)),
                description=as_text(first_value([hit], CENSUS_HIT_DESCRIPTION_PATHS)),
                url=as_text(hit.get("url")),
                metadata={key: value for key, value in hints.items() if value},
            )
        )
    return entities


# Census Reporter table search, hits carry bare table codes
REPORTER_CODE_PATHS: List[Path] = [("table_id",), ("id",)]
REPORTER_TITLE_PATHS: List[Path] = [("table_name",), ("simple_table_name",)]


def decode_census_reporter_search(payload: Any) -> List[CandidateEntity]:
    hits = payload if isinstance(payload, list) else first_value([payload], [("results",)])
    if not isinstance(hits, list):
        return []

    entities: List[CandidateEntity] = []
    for hit in hits:
        if not isinstance(hit, dict):
            continue
        code = as_text(first_value([hit], REPORTER_CODE_PATHS))
        if not code:
            continue
        table_name = as_text(hit.get("table_name"))
        simple_name = as_text(hit.get("simple_table_name"))
        metadata = {
            "tableId": code,
            "tableName": table_name,
            "simpleTableName": simple_name,
            "universe": as_text(hit.get("universe")),
            "topics": hit.get("topics") or None,
        }
        entities.append(
            CandidateEntity(
                bare_code=code,
                title=as_text(first_value([hit], REPORTER_TITLE_PATHS)) or code,
                description=table_name,
                metadata={key: value for key, value in metadata.items() if value},
            )
        )
    return entities
