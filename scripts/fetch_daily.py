#!/usr/bin/env python3
"""
Ingest one DTS date and apply its rollup deltas.

Usage:
    python scripts/fetch_daily.py              # previous working day (LOCAL_TZ)
    python scripts/fetch_daily.py 2025-03-14   # explicit date

Exit code 1 when the fetch or the database write fails; raw rows are kept
under RAW_DIR for scripts/replay_raw.py.
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
from tariff_tracker.errors import IngestError
from tariff_tracker.pipeline.orchestrator import run_daily_ingest
from tariff_tracker.utils import parse_iso_date


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Ingest one DTS date and apply its rollup deltas.")
    parser.add_argument("date", nargs="?", type=parse_iso_date, help="DTS date (YYYY-MM-DD); default previous working day")
    args = parser.parse_args(argv)

    setup_logging()
    try:
        result = run_daily_ingest(target_date=args.date)
    except IngestError as exc:
        print(f'Failed: {exc}', file=sys.stderr)
        return 1
    if result.status == 'no_data':
        print(f'No rows published for {result.target_date}.')
    else:
        print(
            f'Stored {result.target_date}: tariff={result.tariff}M total={result.total}M '
            f'(delta {result.delta_tariff:+d} / {result.delta_total:+d})'
        )
    return 0


if __name__ == '__main__':
    sys.exit(main())
