"""Command line entry point: ``census-collector``."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .exceptions import CensusCollectorError, get_error_response
from .main import run_collection
from .services.dataset_sink import JsonlFileSink

logger = logging.getLogger("census_collector")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="census-collector",
        description="Collect US Census Bureau tables by search query or table id",
    )
    parser.add_argument("--query", dest="searchQuery", help="Free-text search query")
    parser.add_argument("--table-id", dest="tableId", help="Table id, qualified or bare (e.g. B01001)")
    parser.add_argument("--dataset", help="Dataset code, e.g. acs/acs1")
    parser.add_argument("--geography", help="Geography level: us, state, county, place, zcta, metro")
    parser.add_argument("--year", help="Four-digit year")
    parser.add_argument("--max-items", dest="maxItems", type=int, help="Maximum records to emit")
    parser.add_argument("--input", dest="input_file", help="JSON file with the run input")
    parser.add_argument("--output", default="-", help="JSON-lines output path (default: stdout)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def input_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Merge a JSON input file with command line flags; flags win."""
    run_input: Dict[str, Any] = {}
    if args.input_file:
        with open(args.input_file, encoding="utf-8") as f:
            run_input.update(json.load(f))

    for key in ("searchQuery", "tableId", "dataset", "geography", "year", "maxItems"):
        value = getattr(args, key)
        if value is not None:
            run_input[key] = value
    return run_input


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    sink = JsonlFileSink(sys.stdout if args.output == "-" else args.output)
    try:
        summary = asyncio.run(run_collection(input_from_args(args), sink))
    except CensusCollectorError as e:
        logger.error(f"Run failed: {e.message}")
        print(json.dumps(get_error_response(e)), file=sys.stderr)
        return 1
    finally:
        sink.close()

    logger.info(f"Emitted {summary.total_pushed} record(s), {summary.total_errors} error(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
