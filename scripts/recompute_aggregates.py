#!/usr/bin/env python3
"""Discard and rebuild tariff_monthly / tariff_yearly from tariff_daily."""
from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from tariff_tracker.logging import setup_logging
from tariff_tracker.errors import IngestError
from tariff_tracker.pipeline.orchestrator import run_recompute

if __name__ == '__main__':
    setup_logging()
    try:
        counts = run_recompute()
    except IngestError as exc:
        print(f'Failed: {exc}', file=sys.stderr)
        sys.exit(1)
    print(f'Rebuilt {counts["months"]} monthly and {counts["years"]} yearly rows.')
