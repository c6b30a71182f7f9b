"""Maps a merged metadata+data table onto the flat output schema."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import InvalidRecordInputError
from ..models import (
    UNAVAILABLE_TITLE,
    DimensionRef,
    OutputRecord,
    TableRecord,
    TableVariables,
    VariableRef,
    embedded_year,
    utc_timestamp,
)
from ..providers.decoders import Path, as_text, dig, first_value

logger = logging.getLogger(__name__)

# Upstream placeholders that mean "no title"
PLACEHOLDER_TITLES = {"untitled", "untitled table"}

GEOGRAPHY_DIMENSION_TYPES = {"GEOGRAPHY", "GEO"}
NUMERIC_PREDICATE_TYPES = {"int", "integer", "float", "number", "double", "decimal"}

METADATA_CONTENT_PATH: Path = ("metadataContent",)
DATASET_VINTAGE_PATHS: List[Path] = [("dataset", "vintage"), ("vintage",)]
MEASURE_LIST_PATHS: List[Path] = [("measures",)]
DIMENSION_LIST_PATHS: List[Path] = [("dimensions",)]
VARIABLE_LIST_PATHS: List[Path] = [("variables",)]
DIMENSION_TYPE_PATHS: List[Path] = [("dimension_type", "id"), ("dimensionType", "id"), ("dimensionType",)]
VARIABLE_ID_PATHS: List[Path] = [("id",), ("name",), ("code",)]
VARIABLE_LABEL_PATHS: List[Path] = [("label",), ("title",), ("item", "label"), ("concept",)]


class RecordMapper:
    """Normalizes merged tables. Pure apart from the capture timestamp."""

    def __init__(self, viewer_url: str = "https://data.census.gov/table"):
        self.viewer_url = viewer_url.rstrip("/")

    def map(self, table: TableRecord) -> OutputRecord:
        """Build the canonical record for one merged table.

        Raises:
            InvalidRecordInputError: If the merged table has no identifier
        """
        if table is None or not table.id:
            raise InvalidRecordInputError("Invalid table data: missing required property (id)")

        content = self._content(table.metadata)
        dataset_vintage = as_text(first_value([content], DATASET_VINTAGE_PATHS))
        id_year = embedded_year(table.id)

        return OutputRecord(
            table_id=table.id,
            title=self._title(table, content),
            description=table.description or as_text(content.get("description")),
            survey=table.survey or as_text(dig(content, ("dataset", "name"))),
            universe=table.universe or as_text(content.get("universe")),
            year=_first_present(table.year, dataset_vintage, id_year, table.vintage),
            vintage=_first_present(table.vintage, dataset_vintage, id_year, table.year),
            url=table.url or f"{self.viewer_url}?tid={table.id}",
            geography=self._geography(content),
            variables=self._variables(content),
            data=table.data,
            scraped_timestamp=utc_timestamp(),
        )

    @staticmethod
    def _content(metadata: Dict[str, Any]) -> Dict[str, Any]:
        nested = dig(metadata, METADATA_CONTENT_PATH)
        if isinstance(nested, dict):
            return nested
        return metadata if isinstance(metadata, dict) else {}

    @staticmethod
    def _title(table: TableRecord, content: Dict[str, Any]) -> str:
        for candidate in (table.title, as_text(content.get("title"))):
            if candidate and candidate.strip().lower() not in PLACEHOLDER_TITLES:
                return candidate
        return UNAVAILABLE_TITLE

    @staticmethod
    def _geography(content: Dict[str, Any]) -> Optional[str]:
        dimensions = first_value([content], DIMENSION_LIST_PATHS)
        if not isinstance(dimensions, list):
            return None
        for dimension in dimensions:
            dimension_type = as_text(first_value([dimension], DIMENSION_TYPE_PATHS))
            if dimension_type and dimension_type.upper() in GEOGRAPHY_DIMENSION_TYPES:
                return as_text(dig(dimension, ("item", "label")))
        return None

    def _variables(self, content: Dict[str, Any]) -> Optional[TableVariables]:
        measures = first_value([content], MEASURE_LIST_PATHS)
        dimensions = first_value([content], DIMENSION_LIST_PATHS)

        if measures is None and dimensions is None:
            variables = first_value([content], VARIABLE_LIST_PATHS)
            if not isinstance(variables, (list, dict)):
                return None
            measures, dimensions = _split_variables(variables)

        return TableVariables(
            measures=[_variable_ref(entry) for entry in _entries(measures)],
            dimensions=[_dimension_ref(entry) for entry in _entries(dimensions)],
        )


def _first_present(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value:
            return value
    return None


def _entries(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def _variable_ref(entry: Dict[str, Any]) -> VariableRef:
    return VariableRef(
        id=as_text(first_value([entry], VARIABLE_ID_PATHS)),
        label=as_text(first_value([entry], VARIABLE_LABEL_PATHS)),
    )


def _dimension_ref(entry: Dict[str, Any]) -> DimensionRef:
    ref = _variable_ref(entry)
    return DimensionRef(
        id=ref.id,
        label=ref.label,
        dimension_type=as_text(first_value([entry], DIMENSION_TYPE_PATHS)),
    )


def _split_variables(variables: Any) -> tuple:
    """Split a flat variable list into numeric measures and categorical dimensions.

    Accepts a list of variable objects or the API-style ``{name: {...}}`` map.
    """
    if isinstance(variables, dict):
        entries = [
            {"id": name, **definition}
            for name, definition in variables.items()
            if isinstance(definition, dict)
        ]
    else:
        entries = _entries(variables)

    measures, dimensions = [], []
    for entry in entries:
        predicate = str(entry.get("predicateType") or entry.get("type") or "").lower()
        if predicate in NUMERIC_PREDICATE_TYPES:
            measures.append(entry)
        else:
            dimensions.append(entry)
    return measures, dimensions
