from datetime import date
from fastapi import APIRouter, BackgroundTasks, HTTPException
from .schemas import (
    RunAccepted, DailyIngestRequest, BackfillRequest, StatusResponse,
    SummaryToday, CumulativeRow, MonthlyRow,
)
from ..pipeline.orchestrator import open_conn, trigger_daily, trigger_backfill, trigger_recompute, get_status
from ..pipeline.rollups import check_rollups
from ..pipeline.utils import last_run
from ..errors import PersistenceError
from ..config import settings
from ..utils import local_today

router = APIRouter()

_MIN_YEAR = 1900
_MAX_YEAR = 3000

def _conn():
    try:
        return open_conn()
    except PersistenceError as e:
        raise HTTPException(503, f'db_error: {e}')

def _rows(cur):
    cols = [c[0] for c in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]

def _resolve_year(year: int | None) -> int:
    if year is None:
        return local_today(settings.local_tz).year
    if year < _MIN_YEAR or year > _MAX_YEAR:
        raise HTTPException(400, 'Invalid year')
    return year

def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(400, f'{name} must be YYYY-MM-DD')

@router.get(
    '/healthz',
    summary="Health check",
    description="Returns DB connectivity plus last run metadata.",
    tags=["Health"],
)
def health():
    conn = _conn()
    try:
        conn.execute("SELECT 1").fetchone()
        return {'ok': True, 'db': 'ok', 'last_run': last_run(conn)}
    except Exception as e:
        raise HTTPException(503, f'db_error: {e}')
    finally:
        conn.close()

@router.get(
    '/api/summary/today',
    response_model=SummaryToday,
    summary="Latest day and year to date",
    description="Most recent daily row plus the yearly rollup (year defaults to the current local year).",
    tags=["Summary"],
)
def summary_today(year: int | None = None):
    year = _resolve_year(year)
    conn = _conn()
    try:
        cur = conn.execute(
            "SELECT dts_date, tariff_millions, total_deposits_millions FROM tariff_daily ORDER BY dts_date DESC LIMIT 1"
        )
        last = _rows(cur)
        yearly = _rows(conn.execute("SELECT * FROM tariff_yearly WHERE year=?", (year,)))
    finally:
        conn.close()
    return {'last_row': last[0] if last else None, 'yearly': yearly}

@router.get(
    '/api/cumulative',
    response_model=list[CumulativeRow],
    summary="Cumulative tariff by day",
    description="Daily rows of one year with a running tariff sum (missing values count as 0).",
    tags=["Summary"],
)
def cumulative(year: int | None = None):
    year = _resolve_year(year)
    conn = _conn()
    try:
        cur = conn.execute(
            """
            SELECT dts_date,
                   tariff_millions,
                   SUM(COALESCE(tariff_millions, 0)) OVER (ORDER BY dts_date) AS cumulative_tariff
            FROM tariff_daily
            WHERE substr(dts_date, 1, 4) = ?
            ORDER BY dts_date
            """,
            (f"{year:04d}",),
        )
        return _rows(cur)
    finally:
        conn.close()

@router.get(
    '/api/monthly',
    response_model=list[MonthlyRow],
    summary="Monthly rollups",
    description="Monthly sums of one year with tariff as a percentage of total deposits (0 when deposits are 0).",
    tags=["Summary"],
)
def monthly(year: int | None = None):
    year = _resolve_year(year)
    conn = _conn()
    try:
        cur = conn.execute(
            """
            SELECT month,
                   tariff_millions_sum,
                   total_deposits_millions_sum,
                   CASE WHEN total_deposits_millions_sum = 0 THEN 0
                        ELSE 100.0 * tariff_millions_sum / total_deposits_millions_sum END AS pct_of_total
            FROM tariff_monthly
            WHERE substr(month, 1, 4) = ?
            ORDER BY month
            """,
            (f"{year:04d}",),
        )
        return _rows(cur)
    finally:
        conn.close()

@router.post(
    '/ingest/daily',
    response_model=RunAccepted,
    status_code=202,
    summary="Trigger daily ingestion",
    description="Fetches one DTS date (default: previous working day) and applies it with rollup deltas.",
    tags=["Ingest"],
)
def ingest_daily(background: BackgroundTasks, req: DailyIngestRequest | None = None):
    target = _parse_date(req.date, 'date') if req and req.date else None
    return RunAccepted(run_id=trigger_daily(background, target))

@router.post(
    '/backfill',
    response_model=RunAccepted,
    status_code=202,
    summary="Trigger backfill",
    description="Fetches a date range, writes absolute daily values and rebuilds all rollups.",
    tags=["Ingest"],
)
def backfill(req: BackfillRequest, background: BackgroundTasks):
    start = _parse_date(req.start_date, 'start_date')
    end = _parse_date(req.end_date, 'end_date')
    if start > end:
        raise HTTPException(400, 'start_date must be <= end_date')
    return RunAccepted(run_id=trigger_backfill(background, start, end))

@router.post(
    '/recompute',
    response_model=RunAccepted,
    status_code=202,
    summary="Rebuild rollups",
    description="Discards and rebuilds monthly and yearly rollups from the daily table.",
    tags=["Ingest"],
)
def recompute(background: BackgroundTasks):
    return RunAccepted(run_id=trigger_recompute(background))

@router.get(
    '/status/{run_id}',
    response_model=StatusResponse,
    summary="Get run status",
    description="Return status for a given run_id.",
    tags=["Ingest"],
)
def status(run_id: str):
    try:
        st = get_status(run_id)
    except PersistenceError as e:
        raise HTTPException(503, f'db_error: {e}')
    if not st:
        raise HTTPException(404, 'run not found')
    return st

@router.get(
    '/rollups/check',
    summary="Verify rollups",
    description="Compares stored rollups with a fresh re-sum of the daily table.",
    tags=["Admin"],
)
def rollups_check():
    conn = _conn()
    try:
        mismatches = check_rollups(conn)
    finally:
        conn.close()
    return {'ok': not mismatches, 'mismatches': mismatches}
