from functools import lru_cache
from typing import Annotated, List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Collector configuration loaded from environment variables."""

    census_base_url: str = Field(default="https://data.census.gov/api", alias="CENSUS_BASE_URL")
    census_viewer_url: str = Field(default="https://data.census.gov/table", alias="CENSUS_VIEWER_URL")
    census_reporter_url: str = Field(
        default="https://api.censusreporter.org/1.0", alias="CENSUS_REPORTER_URL"
    )
    search_backend: Literal["census_reporter", "census"] = Field(
        default="census_reporter",
        alias="SEARCH_BACKEND",
        description="census_reporter returns bare table codes, census returns qualified ids",
    )
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; CensusScraper/1.0)", alias="USER_AGENT"
    )

    # Collection tuning
    batch_size: int = Field(default=20, alias="BATCH_SIZE")
    batch_delay_seconds: float = Field(default=0.5, alias="BATCH_DELAY_SECONDS")
    search_page_size: int = Field(default=50, alias="SEARCH_PAGE_SIZE")
    search_page_delay_seconds: float = Field(default=1.0, alias="SEARCH_PAGE_DELAY_SECONDS")
    early_exit_multiplier: float = Field(
        default=2.0,
        alias="EARLY_EXIT_MULTIPLIER",
        description="Non-broad searches stop probing terms at cap * multiplier candidates",
    )
    probe_years: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["2023", "2022", "2021", "2020", "2019"],
        alias="PROBE_YEARS",
    )
    max_item_bytes: int = Field(default=9 * 1024 * 1024, alias="MAX_ITEM_BYTES")

    # Plan limits
    free_max_items: int = Field(default=100, alias="FREE_MAX_ITEMS")
    paid_max_items: int = Field(default=1_000_000, alias="PAID_MAX_ITEMS")
    user_is_paying: bool = Field(default=False, alias="USER_IS_PAYING")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,  # Treat empty strings as not set
        populate_by_name=True,
    )

    @field_validator("probe_years", mode="before")
    @classmethod
    def parse_probe_years(cls, v):
        """Parse PROBE_YEARS from comma-separated string or list"""
        if isinstance(v, str):
            v = [year.strip() for year in v.split(",") if year.strip()]
        years = [str(year) for year in (v or [])]
        for year in years:
            if len(year) != 4 or not year.isdigit():
                raise ValueError(f"PROBE_YEARS entries must be four-digit years, got '{year}'")
        return years

    @field_validator("batch_size", "search_page_size")
    @classmethod
    def positive_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch and page sizes must be at least 1")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
