"""Re-derive every user's cached point total from the points ledger.

Prints the recalculation report as JSON. Exits 0 when the run completes, even
if individual users failed, unless ``--strict`` is given; exits 1 on a fatal
error.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from questline.points import PointsRecalculator

LOGGER = logging.getLogger("questline.recalculate_points")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recalculate cached user point totals.")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when any user fails to recalculate.",
    )
    parser.add_argument(
        "--error-limit",
        type=int,
        default=None,
        help="Maximum number of per-user errors kept in the report.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("QUESTLINE_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        report = PointsRecalculator(error_limit=args.error_limit).recalculate_all()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Points recalculation aborted: %s", exc)
        return 1

    print(json.dumps(report.model_dump(mode="json")))
    if args.strict and report.users_failed:
        LOGGER.error("%s users failed to recalculate", report.users_failed)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
