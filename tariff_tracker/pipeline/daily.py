import json
import sqlite3
from dataclasses import dataclass
from datetime import date

import structlog

from ..db import write_transaction
from ..utils import now_utc_iso
from .normalize import as_delta_operand
from .rollups import apply_delta

log = structlog.get_logger()


@dataclass(frozen=True)
class PreviousValues:
    tariff: int
    total: int
    existed: bool


@dataclass(frozen=True)
class DailyWrite:
    day: date
    tariff: int | None
    total: int | None
    delta_tariff: int
    delta_total: int
    rollups_changed: bool


def read_daily(conn: sqlite3.Connection, day: date) -> PreviousValues:
    row = conn.execute(
        "SELECT tariff_millions, total_deposits_millions FROM tariff_daily WHERE dts_date=?",
        (day.isoformat(),),
    ).fetchone()
    if not row:
        return PreviousValues(0, 0, False)
    return PreviousValues(as_delta_operand(row[0]), as_delta_operand(row[1]), True)


def upsert_daily(
    conn: sqlite3.Connection,
    day: date,
    tariff: int | None,
    total: int | None,
    raw_rows: list,
) -> PreviousValues:
    """
    Insert or overwrite the tariff_daily row for `day` and return what it held
    before (0/0 when there was no row). Callers wanting a consistent
    before/after pair run this inside write_transaction().
    """
    previous = read_daily(conn, day)
    conn.execute(
        """
        INSERT INTO tariff_daily (dts_date, tariff_millions, total_deposits_millions, raw, fetched_at)
        VALUES (?,?,?,?,?)
        ON CONFLICT (dts_date) DO UPDATE
          SET tariff_millions = excluded.tariff_millions,
              total_deposits_millions = excluded.total_deposits_millions,
              raw = excluded.raw,
              fetched_at = excluded.fetched_at
        """,
        (day.isoformat(), tariff, total, json.dumps(raw_rows, default=str), now_utc_iso()),
    )
    return previous


def ingest_day(
    conn: sqlite3.Connection,
    day: date,
    tariff: int | None,
    total: int | None,
    raw_rows: list,
) -> DailyWrite:
    """Upsert one day and push the (new - old) delta into its month and year, atomically."""
    with write_transaction(conn):
        previous = upsert_daily(conn, day, tariff, total, raw_rows)
        delta_tariff = as_delta_operand(tariff) - previous.tariff
        delta_total = as_delta_operand(total) - previous.total
        changed = apply_delta(conn, day, delta_tariff, delta_total)
    log.info(
        "daily_ingested",
        target_date=day.isoformat(),
        tariff=tariff,
        total=total,
        delta_tariff=delta_tariff,
        delta_total=delta_total,
        rollups_changed=changed,
        existed=previous.existed,
    )
    return DailyWrite(day, tariff, total, delta_tariff, delta_total, changed)
