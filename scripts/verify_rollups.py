#!/usr/bin/env python3
"""
Check that every monthly/yearly rollup equals the sum of its daily rows.

Usage:
    python scripts/verify_rollups.py
    python scripts/verify_rollups.py --fix    # recompute when a mismatch is found
"""
from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from tariff_tracker.logging import setup_logging
from tariff_tracker.db import get_conn, migrate
from tariff_tracker.config import settings
from tariff_tracker.pipeline.rollups import check_rollups, recompute_rollups


def main():
    fix = '--fix' in sys.argv[1:]
    setup_logging()
    conn = get_conn(settings.db_path, timeout=settings.db_connect_timeout_seconds)
    migrate(conn)
    mismatches = check_rollups(conn)
    if not mismatches:
        print("Validation complete: rollups match daily sums.")
        sys.exit(0)
    print("MISMATCHES:")
    for m in mismatches:
        print(
            f"  {m['granularity']} {m['bucket']}: tariff {m['stored_tariff']} vs {m['expected_tariff']}, "
            f"deposits {m['stored_total']} vs {m['expected_total']}"
        )
    if fix:
        recompute_rollups(conn)
        remaining = check_rollups(conn)
        print(f"Recomputed; {len(remaining)} mismatches remain.")
        sys.exit(2 if remaining else 0)
    sys.exit(1)


if __name__ == "__main__":
    main()
