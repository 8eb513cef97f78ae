"""
Monthly and yearly rollups of tariff_daily.

apply_delta keeps both tables current incrementally; recompute_rollups rebuilds
them from scratch; check_rollups compares what is stored against a fresh
re-sum of the daily rows.
"""
import sqlite3
from datetime import date

import pandas as pd
import structlog

from ..db import write_transaction
from ..utils import now_utc_iso, month_key

log = structlog.get_logger()

_MONTHLY_INC = """
INSERT INTO tariff_monthly (month, tariff_millions_sum, total_deposits_millions_sum, updated_at)
VALUES (?, ?, ?, ?)
ON CONFLICT (month) DO UPDATE
  SET tariff_millions_sum = tariff_monthly.tariff_millions_sum + excluded.tariff_millions_sum,
      total_deposits_millions_sum = tariff_monthly.total_deposits_millions_sum + excluded.total_deposits_millions_sum,
      updated_at = excluded.updated_at
"""

_YEARLY_INC = """
INSERT INTO tariff_yearly (year, tariff_millions_sum, total_deposits_millions_sum, updated_at)
VALUES (?, ?, ?, ?)
ON CONFLICT (year) DO UPDATE
  SET tariff_millions_sum = tariff_yearly.tariff_millions_sum + excluded.tariff_millions_sum,
      total_deposits_millions_sum = tariff_yearly.total_deposits_millions_sum + excluded.total_deposits_millions_sum,
      updated_at = excluded.updated_at
"""


def apply_delta(conn: sqlite3.Connection, day: date, delta_tariff: int, delta_total: int) -> bool:
    """
    Add (delta_tariff, delta_total) to the month and year buckets owning `day`.

    Must run inside the same transaction that read the previous daily values.
    Returns False when both deltas are zero and nothing was written.
    """
    if delta_tariff == 0 and delta_total == 0:
        return False
    now = now_utc_iso()
    cur = conn.cursor()
    cur.execute(_MONTHLY_INC, (month_key(day), delta_tariff, delta_total, now))
    cur.execute(_YEARLY_INC, (day.year, delta_tariff, delta_total, now))
    return True


def recompute_rollups(conn: sqlite3.Connection) -> dict:
    now = now_utc_iso()
    with write_transaction(conn):
        cur = conn.cursor()
        cur.execute("DELETE FROM tariff_monthly")
        cur.execute(
            """
            INSERT INTO tariff_monthly (month, tariff_millions_sum, total_deposits_millions_sum, updated_at)
            SELECT substr(dts_date, 1, 7) || '-01' AS month,
                   COALESCE(SUM(tariff_millions), 0),
                   COALESCE(SUM(total_deposits_millions), 0),
                   ?
            FROM tariff_daily
            GROUP BY month
            ORDER BY month
            """,
            (now,),
        )
        months = cur.rowcount
        cur.execute("DELETE FROM tariff_yearly")
        cur.execute(
            """
            INSERT INTO tariff_yearly (year, tariff_millions_sum, total_deposits_millions_sum, updated_at)
            SELECT CAST(substr(dts_date, 1, 4) AS INTEGER) AS year,
                   COALESCE(SUM(tariff_millions), 0),
                   COALESCE(SUM(total_deposits_millions), 0),
                   ?
            FROM tariff_daily
            GROUP BY year
            ORDER BY year
            """,
            (now,),
        )
        years = cur.rowcount
    log.info("rollups_recomputed", months=months, years=years)
    return {"months": months, "years": years}


def _expected_sums(conn: sqlite3.Connection) -> tuple[pd.DataFrame, pd.DataFrame]:
    daily = pd.read_sql_query(
        "SELECT dts_date, tariff_millions, total_deposits_millions FROM tariff_daily",
        conn,
    )
    for col in ("tariff_millions", "total_deposits_millions"):
        daily[col] = pd.to_numeric(daily[col], errors="coerce").fillna(0).astype("int64")
    daily["month"] = daily["dts_date"].astype(str).str.slice(0, 7) + "-01"
    daily["year"] = daily["dts_date"].astype(str).str.slice(0, 4).astype("int64")
    cols = ["tariff_millions", "total_deposits_millions"]
    return daily.groupby("month")[cols].sum(), daily.groupby("year")[cols].sum()


def _stored_sums(conn: sqlite3.Connection, table: str, key: str) -> pd.DataFrame:
    stored = pd.read_sql_query(
        f"SELECT {key}, tariff_millions_sum, total_deposits_millions_sum FROM {table}",
        conn,
    )
    if key == "year":
        stored[key] = stored[key].astype("int64")
    return stored.set_index(key)


def _mismatches(expected: pd.DataFrame, stored: pd.DataFrame, granularity: str) -> list[dict]:
    merged = expected.join(stored, how="outer").fillna(0)
    bad = merged[
        (merged["tariff_millions"] != merged["tariff_millions_sum"])
        | (merged["total_deposits_millions"] != merged["total_deposits_millions_sum"])
    ]
    out = []
    for key, row in bad.iterrows():
        out.append(
            {
                "granularity": granularity,
                "bucket": str(key),
                "expected_tariff": int(row["tariff_millions"]),
                "stored_tariff": int(row["tariff_millions_sum"]),
                "expected_total": int(row["total_deposits_millions"]),
                "stored_total": int(row["total_deposits_millions_sum"]),
            }
        )
    return out


def check_rollups(conn: sqlite3.Connection) -> list[dict]:
    """
    Buckets whose stored rollup differs from SUM(daily) with nulls as 0.

    A bucket missing from a rollup table counts as zero, so a month whose
    deltas cancelled out to 0 agrees with a recompute that never wrote it.
    """
    monthly_expected, yearly_expected = _expected_sums(conn)
    out = _mismatches(monthly_expected, _stored_sums(conn, "tariff_monthly", "month"), "month")
    out += _mismatches(yearly_expected, _stored_sums(conn, "tariff_yearly", "year"), "year")
    if out:
        log.warning("rollup_mismatch", count=len(out), first=out[0])
    return out
