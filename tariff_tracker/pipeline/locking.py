import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone, timedelta

from ..db import write_transaction
from ..errors import RunLockedError

INGEST_LOCK = "ingest"

def acquire_lock(conn: sqlite3.Connection, name: str, owner: str, ttl_seconds: int = 7200) -> bool:
    """Take `name` unless a live lease by another owner exists; expired leases are stolen."""
    now = datetime.now(timezone.utc)
    exp = now + timedelta(seconds=ttl_seconds)
    with write_transaction(conn):
        row = conn.execute("SELECT owner, expires_at_utc FROM locks WHERE name=?", (name,)).fetchone()
        if row and row[0] != owner and datetime.fromisoformat(row[1]) >= now:
            return False
        conn.execute(
            "INSERT OR REPLACE INTO locks(name, owner, acquired_at_utc, expires_at_utc) VALUES(?,?,?,?)",
            (name, owner, now.isoformat(), exp.isoformat()),
        )
    return True

def release_lock(conn: sqlite3.Connection, name: str, owner: str):
    conn.execute("DELETE FROM locks WHERE name=? AND owner=?", (name, owner))

@contextmanager
def held_lock(conn: sqlite3.Connection, name: str, owner: str, ttl_seconds: int = 7200, target_date: str | None = None):
    if not acquire_lock(conn, name, owner, ttl_seconds):
        raise RunLockedError(f"lock '{name}' is held by another run", stage="acquire_lock", target_date=target_date)
    try:
        yield
    finally:
        release_lock(conn, name, owner)
