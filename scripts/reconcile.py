#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from datetime import date, datetime, time, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from grill_backoffice.core.database import SessionLocal, dispose_engine, init_engine  # noqa: E402
from grill_backoffice.core.logging_setup import configure_logging  # noqa: E402
from grill_backoffice.services.reconciliation import (  # noqa: E402
    previous_day_window,
    reconcile_orders_for_range,
)
from grill_backoffice.square.base import SquareAPIError  # noqa: E402
from grill_backoffice.square.client import SquareClient  # noqa: E402


def _parse_datetime(value: str, is_end: bool) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        parsed = datetime.combine(
            date.fromisoformat(value),
            time(23, 59, 59, 999000) if is_end else time.min,
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile inventory usage against Square orders.")
    parser.add_argument("--start", help="Window start (ISO date or datetime, UTC). Defaults to yesterday.")
    parser.add_argument("--end", help="Window end (ISO date or datetime, UTC). Defaults to yesterday.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging()

    if bool(args.start) != bool(args.end):
        print("--start and --end must be provided together")
        return 1

    if args.start:
        try:
            start_at = _parse_datetime(args.start, is_end=False)
            end_at = _parse_datetime(args.end, is_end=True)
        except ValueError as exc:
            print(f"Invalid date: {exc}")
            return 1
    else:
        start_at, end_at = previous_day_window()

    init_engine()
    try:
        with SquareClient() as client:
            result = reconcile_orders_for_range(SessionLocal, client, start_at, end_at)
    except SquareAPIError as exc:
        print(f"Reconciliation failed: {exc}")
        return 1
    finally:
        dispose_engine()

    print(
        f"Reconciliation {start_at.isoformat()} -> {end_at.isoformat()}: "
        f"orders={result.processed_orders} adjustments={result.adjustments} failed={result.failed_orders}"
    )
    return 0 if result.failed_orders == 0 else 2


if __name__ == "__main__":
    raise SystemExit(main())
