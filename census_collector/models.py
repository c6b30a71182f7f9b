from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Four-digit year immediately before the dataset/table separator
QUALIFIED_ID_PATTERN = re.compile(r"^(?P<prefix>[A-Z][A-Z0-9]*?)(?P<year>\d{4})\.(?P<code>\S+)$")
EMBEDDED_YEAR_PATTERN = re.compile(r"(\d{4})\.")

UNAVAILABLE_TITLE = "Unavailable"


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision (lexically sortable)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, eq=False)
class CandidateIdentifier:
    """A fully-qualified table identifier, e.g. ACSDT1Y2021.B01001."""

    dataset_prefix: str
    year: str
    bare_code: str

    def __str__(self) -> str:
        return f"{self.dataset_prefix}{self.year}.{self.bare_code}"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CandidateIdentifier):
            return str(self) == str(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(str(self))

    @classmethod
    def parse(cls, value: str) -> Optional[CandidateIdentifier]:
        """Split a qualified identifier into its parts, None if it isn't one."""
        match = QUALIFIED_ID_PATTERN.match(value.strip())
        if not match:
            return None
        return cls(match.group("prefix"), match.group("year"), match.group("code"))


def embedded_year(identifier: str) -> Optional[str]:
    match = EMBEDDED_YEAR_PATTERN.search(identifier)
    return match.group(1) if match else None


class CollectionInput(BaseModel):
    """Run input as supplied by the hosting runtime."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    search_query: Optional[str] = Field(default=None, alias="searchQuery")
    table_id: Optional[str] = Field(default=None, alias="tableId")
    dataset: Optional[str] = None
    geography: Optional[str] = None
    year: Optional[str] = None
    max_items: Optional[int] = Field(default=None, alias="maxItems", ge=1)

    @field_validator("search_query", "table_id", "dataset", "geography", "year", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("year")
    @classmethod
    def four_digit_year(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (len(v) != 4 or not v.isdigit()):
            raise ValueError(f"year must be a four-digit year, got '{v}'")
        return v


class CandidateEntity(BaseModel):
    """A raw search hit, before or after identifier qualification."""

    id: Optional[str] = None
    bare_code: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    type: str = "table"
    url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def with_identifier(self, identifier: str) -> CandidateEntity:
        return self.model_copy(update={"id": identifier})


class TableRecord(BaseModel):
    """Metadata and/or data fetched for one identifier.

    The same shape carries a metadata fetch, a data fetch and the merged
    table built from both.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    universe: Optional[str] = None
    survey: Optional[str] = None
    year: Optional[str] = None
    vintage: Optional[str] = None
    url: Optional[str] = None
    data: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def merge_table(identifier: str, metadata: TableRecord, data: Optional[TableRecord]) -> TableRecord:
    """Union of a metadata fetch and a data fetch.

    Metadata wins every conflict except the data payload itself.
    """
    payload = data.data if data is not None and data.data is not None else metadata.data
    return metadata.model_copy(
        update={
            "id": metadata.id or identifier,
            "data": payload,
            "url": metadata.url or (data.url if data is not None else None),
        }
    )


class VariableRef(BaseModel):
    id: Optional[str] = None
    label: Optional[str] = None


class DimensionRef(VariableRef):
    dimension_type: Optional[str] = Field(default=None, alias="dimensionType")

    model_config = ConfigDict(populate_by_name=True)


class TableVariables(BaseModel):
    measures: List[VariableRef] = Field(default_factory=list)
    dimensions: List[DimensionRef] = Field(default_factory=list)


class OutputRecord(BaseModel):
    """Canonical normalized table record."""

    model_config = ConfigDict(populate_by_name=True)

    table_id: str = Field(alias="tableId")
    title: str
    description: Optional[str] = None
    survey: Optional[str] = None
    universe: Optional[str] = None
    year: Optional[str] = None
    vintage: Optional[str] = None
    url: str
    geography: Optional[str] = None
    variables: Optional[TableVariables] = None
    data: Any = None
    scraped_timestamp: str = Field(alias="scrapedTimestamp")

    # Size-guard markers
    variables_omitted: Optional[str] = Field(default=None, alias="variablesOmitted")
    data_omitted: Optional[str] = Field(default=None, alias="dataOmitted")
    data_size_mb: Optional[str] = Field(default=None, alias="dataSizeMB")

    def to_output(self) -> Dict[str, Any]:
        """Serializable dict; unknown or omitted fields are left out, never null.

        Only top-level fields are pruned, the data payload is passed through
        untouched.
        """
        dumped = self.model_dump(by_alias=True)
        if self.variables is not None:
            dumped["variables"] = self.variables.model_dump(by_alias=True, exclude_none=True)
        return {key: value for key, value in dumped.items() if value is not None}


class ErrorRecord(BaseModel):
    """Stands in for a table that could not be turned into an OutputRecord."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    table_id: Optional[str] = Field(default=None, alias="tableId")
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    error_message: str = Field(alias="errorMessage")
    scraped_timestamp: str = Field(default_factory=utc_timestamp, alias="scrapedTimestamp")

    @classmethod
    def for_identifier(
        cls,
        error: str,
        message: str,
        table_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> ErrorRecord:
        # entityId is only reported when it differs from the table id
        if entity_id is not None and entity_id == table_id:
            entity_id = None
        return cls(error=error, table_id=table_id, entity_id=entity_id, error_message=message or error)

    def to_output(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RunSummary(BaseModel):
    total_fetched: int = 0
    total_pushed: int = 0
    total_errors: int = 0
    duplicates_skipped: int = 0
    batches: int = 0
    duration_ms: int = 0
