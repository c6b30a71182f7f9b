"""Closed enumerations recognized by the data.census.gov identifier scheme.

A fully-qualified table id is ``{prefix}{year}.{code}`` where the prefix names
the dataset family and estimate type (``ACSDT1Y`` is ACS 1-year detailed
tables, ``DECENNIALPL`` is the redistricting file, ...).
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# Dataset codes as accepted on input -> table id prefixes, in probe order
DATASET_PREFIXES: Dict[str, List[str]] = {
    "acs/acs1": ["ACSDT1Y"],
    "acs/acs5": ["ACSDT5Y"],
    "acs/acs1/subject": ["ACSSDT1Y"],
    "acs/acs5/subject": ["ACSSDT5Y"],
    "acs/acs1/profile": ["ACSDP1Y"],
    "acs/acs5/profile": ["ACSDP5Y"],
    "dec/pl": ["DECENNIALPL"],
    "dec/dp": ["DECENNIALDP"],
    "dec/dhc": ["DECENNIALDHC"],
    "dec/sf1": ["DECENNIALSF1"],
    "dec/sf2": ["DECENNIALSF2"],
    "dec/sf3": ["DECENNIALSF3"],
    "dec/sf4": ["DECENNIALSF4"],
}

# ACS 1-year and 5-year detailed tables cover most searches
DEFAULT_PREFIXES: List[str] = ["ACSDT1Y", "ACSDT5Y"]

# Fallback inference for dataset codes missing from DATASET_PREFIXES.
# Checked in order; first substring hit wins.
DATASET_KEYWORD_PREFIXES: List[tuple] = [
    ("acs1", ["ACSDT1Y"]),
    ("acs5", ["ACSDT5Y"]),
    ("dec", ["DECENNIALPL", "DECENNIALDP"]),
]

# Geography enumeration -> data.census.gov summary level selector ("g" param)
GEOGRAPHY_CODES: Dict[str, str] = {
    "us": "010XX00US",
    "nation": "010XX00US",
    "state": "040XX00US$0400000",
    "county": "050XX00US$0500000",
    "place": "160XX00US$1600000",
    "zcta": "860XX00US$8600000",
    "metro": "310XX00US$3100000",
}


def prefixes_for_dataset(dataset: Optional[str]) -> List[str]:
    """Return the ordered table id prefixes to try for a dataset filter."""
    if not dataset:
        return list(DEFAULT_PREFIXES)

    key = dataset.strip().lower()
    mapped = DATASET_PREFIXES.get(key)
    if mapped:
        return list(mapped)

    for keyword, prefixes in DATASET_KEYWORD_PREFIXES:
        if keyword in key:
            return list(prefixes)

    logger.debug(f"Unknown dataset filter '{dataset}', using default prefixes")
    return list(DEFAULT_PREFIXES)


def probe_years(year: Optional[str], recent_years: List[str]) -> List[str]:
    """Years to try, most recent first, with the requested year moved to the front."""
    if not year:
        return list(recent_years)
    return [year] + [y for y in recent_years if y != year]


def geography_code(geography: Optional[str]) -> Optional[str]:
    if not geography:
        return None
    code = GEOGRAPHY_CODES.get(geography.strip().lower())
    if code is None:
        logger.debug(f"No summary level for geography '{geography}', not forwarding it")
    return code
