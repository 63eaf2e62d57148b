#!/usr/bin/env python3
"""
Import script for price captures saved by the browser extension.

Reads a JSON file and stores every capture in the price cache file.

Schema for the capture file:
- Either a list of capture objects or {"prices": [...]}
- Each capture object must have: platform, name, price
- Optional fields:
  - unit (or quantity): str (default: "1 unit") - Pack size the price applies to
  - user_id: str - Overrides the --user option for that capture
"""

import argparse
import json
import sys
from collections import defaultdict
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mealcart.ingest.price_ingest import DEFAULT_USER, PriceIngestor
from mealcart.logging_config import get_logger, setup_logging
from mealcart.pricing.cache import PriceCacheStore


def load_captures(path: Path) -> list:
    """Read captures from a JSON file."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("prices", [])
    if not isinstance(data, list):
        raise ValueError("Capture file must hold a list or {\"prices\": [...]}")
    return data


def import_captures(path: Path, user_id: str = DEFAULT_USER, cache_path: str | None = None) -> dict:
    """
    Import captures into the price cache.

    Returns:
        Dictionary with saved, failed and total counts
    """
    log = get_logger(__name__, source_file=str(path))
    cache = PriceCacheStore(path=cache_path)
    cache.load()
    ingestor = PriceIngestor(cache)

    by_user = defaultdict(list)
    for capture in load_captures(path):
        if isinstance(capture, dict):
            by_user[capture.get("user_id") or user_id].append(capture)
        else:
            log.warning(f"Skipping non-object capture: {capture!r}")
            by_user[user_id].append({})

    summary = {"saved": 0, "failed": 0, "total": 0}
    for capture_user, captures in by_user.items():
        result = ingestor.ingest_bulk(capture_user, captures)
        for key in summary:
            summary[key] += result[key]

    log.info(f"Imported {summary['saved']}/{summary['total']} captures")
    return summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import browser-extension price captures into the price cache")
    parser.add_argument("file", type=Path, help="JSON capture file")
    parser.add_argument(
        "--user",
        default=DEFAULT_USER,
        help=f"User ID recorded on captures without one (default: {DEFAULT_USER})",
    )
    parser.add_argument(
        "--cache",
        default=None,
        help="Price cache file (default: settings.price_cache_path)",
    )
    args = parser.parse_args(argv)

    setup_logging()
    try:
        summary = import_captures(args.file, user_id=args.user, cache_path=args.cache)
    except (OSError, ValueError) as e:
        print(f"Error: Failed to import captures: {e}")
        return 1
    print(f"Saved {summary['saved']} of {summary['total']} captures ({summary['failed']} failed).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
