import sqlite3
from contextlib import contextmanager
from pathlib import Path

def get_conn(db_path: str, timeout: float = 10.0) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # autocommit; multi-statement writes go through write_transaction()
    conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn

@contextmanager
def write_transaction(conn: sqlite3.Connection):
    """
    BEGIN IMMEDIATE takes SQLite's reserved lock up front, so two writers on the
    same database file are serialized before either reads the rows it will
    overwrite.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")

DDL = [
    # One row per DTS date; overwritten in place on re-ingestion
    """
CREATE TABLE IF NOT EXISTS tariff_daily (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  dts_date TEXT NOT NULL UNIQUE,
  tariff_millions INTEGER,
  total_deposits_millions INTEGER,
  raw TEXT,
  fetched_at TEXT NOT NULL
);
""",

    # Month rollup keyed by first day of month (YYYY-MM-01)
    """
CREATE TABLE IF NOT EXISTS tariff_monthly (
  month TEXT PRIMARY KEY,
  tariff_millions_sum INTEGER NOT NULL DEFAULT 0,
  total_deposits_millions_sum INTEGER NOT NULL DEFAULT 0,
  updated_at TEXT NOT NULL
);
""",

    """
CREATE TABLE IF NOT EXISTS tariff_yearly (
  year INTEGER PRIMARY KEY,
  tariff_millions_sum INTEGER NOT NULL DEFAULT 0,
  total_deposits_millions_sum INTEGER NOT NULL DEFAULT 0,
  updated_at TEXT NOT NULL
);
""",

    # Runs table
    """
CREATE TABLE IF NOT EXISTS runs (
  run_id TEXT PRIMARY KEY,
  kind TEXT NOT NULL,     -- 'daily'|'backfill'|'recompute'|'replay'
  started_at_utc TEXT NOT NULL,
  finished_at_utc TEXT,
  status TEXT NOT NULL,   -- 'running'|'succeeded'|'failed'
  error_message TEXT,
  range_start TEXT,
  range_end TEXT,
  dates_attempted INTEGER,
  dates_processed INTEGER
);
""",
    "CREATE INDEX IF NOT EXISTS ix_runs_started ON runs(started_at_utc DESC);",

    """
CREATE TABLE IF NOT EXISTS locks (
  name TEXT PRIMARY KEY,
  owner TEXT NOT NULL,
  acquired_at_utc TEXT NOT NULL,
  expires_at_utc TEXT NOT NULL
);
""",
]

def migrate(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
