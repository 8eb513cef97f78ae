#!/usr/bin/env python3
"""
Re-ingest raw rows saved when the database was unavailable.

Usage:
    python scripts/replay_raw.py                              # every file under RAW_DIR
    python scripts/replay_raw.py raw-responses/2025-03-14.json

Uses the single-day path (upsert + rollup delta), so no recompute is needed.
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
from tariff_tracker.config import settings
from tariff_tracker.errors import IngestError
from tariff_tracker.pipeline.orchestrator import run_replay

if __name__ == '__main__':
    setup_logging()
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(settings.raw_dir)
    try:
        written, failed = run_replay(target)
    except IngestError as exc:
        print(f'Failed: {exc}', file=sys.stderr)
        sys.exit(1)
    print(f'Replayed {len(written)} dates from {target}.')
    if failed:
        print('Failed:', ', '.join(failed))
        sys.exit(1)
