import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date

import structlog

from ..db import write_transaction
from ..errors import PersistenceError
from ..utils import parse_iso_date
from .classifier import ClassifierRules, classify_rows
from .daily import upsert_daily
from .raw_store import save_raw_locally
from .rollups import recompute_rollups

log = structlog.get_logger()

_PROGRESS_EVERY = 20


@dataclass
class BackfillResult:
    attempted: int = 0
    processed: int = 0
    failed_dates: list[str] = field(default_factory=list)
    recomputed: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed_dates


def group_by_date(rows: list[dict]) -> dict[date, list[dict]]:
    """Group source rows by record_date; rows without a usable date are dropped."""
    grouped: dict[date, list[dict]] = defaultdict(list)
    skipped = 0
    for row in rows:
        raw = row.get("record_date") if isinstance(row, dict) else None
        try:
            day = parse_iso_date(raw) if raw else None
        except ValueError:
            day = None
        if day is None:
            skipped += 1
            continue
        grouped[day].append(row)
    if skipped:
        log.warning("backfill_rows_without_date", skipped=skipped)
    return dict(sorted(grouped.items()))


def save_all_raw(grouped: dict[date, list[dict]]) -> list[str]:
    saved = []
    for day, rows in grouped.items():
        try:
            save_raw_locally(day, rows, failed=True)
            saved.append(day.isoformat())
        except OSError as exc:
            log.error("raw_save_failed", target_date=day.isoformat(), err=str(exc))
    return saved


def backfill_dates(
    conn: sqlite3.Connection,
    grouped: dict[date, list[dict]],
    rules: ClassifierRules | None = None,
) -> BackfillResult:
    """
    Write absolute daily values for every date, each in its own transaction,
    then rebuild the rollups. Rollups are only trustworthy after the recompute,
    so it runs even when some dates failed.
    """
    result = BackfillResult(attempted=len(grouped))
    for day, rows in grouped.items():
        try:
            values = classify_rows(rows, rules)
            with write_transaction(conn):
                upsert_daily(conn, day, values.tariff, values.total, rows)
        except Exception as exc:
            log.error("backfill_upsert_failed", target_date=day.isoformat(), stage="upsert_daily", err=str(exc))
            result.failed_dates.append(day.isoformat())
            try:
                save_raw_locally(day, rows, failed=True)
            except OSError as save_exc:
                log.error("raw_save_failed", target_date=day.isoformat(), err=str(save_exc))
            continue
        result.processed += 1
        if result.processed % _PROGRESS_EVERY == 0:
            log.info("backfill_progress", processed=result.processed, attempted=result.attempted)

    try:
        recompute_rollups(conn)
    except sqlite3.Error as exc:
        raise PersistenceError(f"rollup recompute failed: {exc}", stage="recompute_rollups") from exc
    result.recomputed = True
    log.info(
        "backfill_dates_done",
        attempted=result.attempted,
        processed=result.processed,
        failed=len(result.failed_dates),
    )
    return result
