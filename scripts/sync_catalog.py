#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from grill_backoffice.core.database import SessionLocal, dispose_engine, init_engine  # noqa: E402
from grill_backoffice.core.logging_setup import configure_logging  # noqa: E402
from grill_backoffice.services.catalog import sync_catalog_variations  # noqa: E402
from grill_backoffice.square.base import SquareAPIError  # noqa: E402
from grill_backoffice.square.client import SquareClient  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pull Square item variations into the local catalog mirror.")
    return parser.parse_args()


def main() -> int:
    parse_args()
    configure_logging()

    init_engine()
    db = SessionLocal()
    try:
        with SquareClient() as client:
            synced = sync_catalog_variations(db, client)
    except SquareAPIError as exc:
        print(f"Catalog sync failed: {exc}")
        return 1
    finally:
        db.close()
        dispose_engine()

    print(f"Catalog synced: {synced} variations")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
