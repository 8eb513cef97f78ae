import sqlite3

from ..utils import now_utc_iso

def start_run(
    conn: sqlite3.Connection,
    run_id: str,
    kind: str,
    range_start: str | None = None,
    range_end: str | None = None,
):
    conn.execute(
        "INSERT OR REPLACE INTO runs(run_id, kind, started_at_utc, status, range_start, range_end) VALUES(?,?,?,?,?,?)",
        (run_id, kind, now_utc_iso(), 'running', range_start, range_end),
    )

def finish_run_ok(conn: sqlite3.Connection, run_id: str, attempted: int | None = None, processed: int | None = None):
    conn.execute(
        "UPDATE runs SET finished_at_utc=?, status=?, dates_attempted=?, dates_processed=? WHERE run_id=?",
        (now_utc_iso(), 'succeeded', attempted, processed, run_id),
    )

def finish_run_fail(
    conn: sqlite3.Connection,
    run_id: str,
    err: str,
    attempted: int | None = None,
    processed: int | None = None,
):
    conn.execute(
        "UPDATE runs SET finished_at_utc=?, status=?, error_message=?, dates_attempted=?, dates_processed=? WHERE run_id=?",
        (now_utc_iso(), 'failed', err[:1000], attempted, processed, run_id),
    )

_RUN_COLS = (
    "run_id", "kind", "started_at_utc", "finished_at_utc", "status", "error_message",
    "range_start", "range_end", "dates_attempted", "dates_processed",
)

def get_run_status(conn: sqlite3.Connection, run_id: str):
    row = conn.execute(
        f"SELECT {', '.join(_RUN_COLS)} FROM runs WHERE run_id=?",
        (run_id,),
    ).fetchone()
    if not row: return None
    return dict(zip(_RUN_COLS, row))

def last_run(conn: sqlite3.Connection):
    row = conn.execute(
        f"SELECT {', '.join(_RUN_COLS)} FROM runs ORDER BY started_at_utc DESC LIMIT 1"
    ).fetchone()
    return dict(zip(_RUN_COLS, row)) if row else None
