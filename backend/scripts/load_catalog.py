"""Load a level/task/team/user catalog into the ledger store."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from questline.catalog import apply_catalog, load_catalog
from questline.config import get_settings
from questline.db.session import session_scope

LOGGER = logging.getLogger("questline.load_catalog")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load a JSON catalog into the database.")
    parser.add_argument(
        "path",
        nargs="?",
        default=None,
        help="Catalog JSON file (default: QUESTLINE_CATALOG_PATH).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the catalog without writing anything.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("QUESTLINE_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        path = args.path or get_settings().catalog_path
        if not path:
            raise RuntimeError("Pass a catalog path or set QUESTLINE_CATALOG_PATH.")
        catalog = load_catalog(path)
        if args.dry_run:
            LOGGER.info("Catalog %s is valid (%s levels)", path, len(catalog.levels))
            return 0
        with session_scope() as session:
            summary = apply_catalog(session, catalog)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Catalog load failed: %s", exc)
        return 1

    print(json.dumps(summary.model_dump()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
