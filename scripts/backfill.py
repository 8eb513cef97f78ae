#!/usr/bin/env python3
"""
Backfill tariff_daily for a date range, then rebuild monthly/yearly rollups.

Usage:
    python scripts/backfill.py                          # BACKFILL_DEFAULT_START -> yesterday
    python scripts/backfill.py 2025-01-01 2025-10-10
"""
from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

import argparse

from tariff_tracker.logging import setup_logging
from tariff_tracker.errors import IngestError, PartialBackfillFailure
from tariff_tracker.pipeline.orchestrator import run_backfill
from tariff_tracker.utils import parse_iso_date


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Backfill DTS tariff data for a date range.")
    parser.add_argument("start", nargs="?", type=parse_iso_date, help="first date (YYYY-MM-DD)")
    parser.add_argument("end", nargs="?", type=parse_iso_date, help="last date (YYYY-MM-DD)")
    args = parser.parse_args(argv)

    setup_logging()
    try:
        result = run_backfill(start=args.start, end=args.end)
    except PartialBackfillFailure as exc:
        res = exc.result
        print(f'Upserted {res.processed}/{res.attempted} dates; failed: {", ".join(res.failed_dates)}')
        print('Rollups were rebuilt from the stored dates. Replay the failed-*.json files once fixed.')
        return 1
    except (IngestError, ValueError) as exc:
        print(f'Failed: {exc}', file=sys.stderr)
        return 1
    print(f'Done. Upserted {result.processed}/{result.attempted} dates; rollups rebuilt.')
    return 0


if __name__ == '__main__':
    sys.exit(main())
