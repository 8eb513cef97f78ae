import sqlite3
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path

import structlog

from ..config import settings
from ..db import get_conn, migrate
from ..errors import IngestError, NoDataError, PartialBackfillFailure, PersistenceError, RunLockedError
from ..providers.fiscal_data import FiscalDataClient
from ..utils import local_today, parse_iso_date, prev_working_day
from .backfill import BackfillResult, backfill_dates, group_by_date, save_all_raw
from .classifier import ClassifierRules, classify_rows, load_rules
from .daily import DailyWrite, ingest_day
from .locking import INGEST_LOCK, held_lock
from .raw_store import list_raw_files, load_raw, save_raw_locally
from .rollups import recompute_rollups
from .utils import start_run, finish_run_ok, finish_run_fail, get_run_status

log = structlog.get_logger()


@dataclass(frozen=True)
class DailyIngestResult:
    run_id: str
    target_date: str
    status: str  # 'stored'|'no_data'
    tariff: int | None = None
    total: int | None = None
    delta_tariff: int = 0
    delta_total: int = 0


def open_conn(target_date: str | None = None) -> sqlite3.Connection:
    try:
        conn = get_conn(settings.db_path, timeout=settings.db_connect_timeout_seconds)
        migrate(conn)
    except (sqlite3.Error, OSError) as exc:
        raise PersistenceError(f"database unreachable: {exc}", stage="connect", target_date=target_date) from exc
    return conn


def _try_open_conn(target_date: str):
    try:
        return open_conn(target_date), None
    except PersistenceError as exc:
        log.error("db_connect_failed", **exc.to_dict())
        return None, exc


def _record_start(conn, run_id: str, kind: str, range_start: str, range_end: str):
    if conn is None:
        return
    try:
        start_run(conn, run_id, kind, range_start, range_end)
    except sqlite3.Error as exc:
        log.warning("run_record_failed", run_id=run_id, err=str(exc))


def _record_finish(conn, run_id: str, err: str | None = None, attempted=None, processed=None):
    if conn is None:
        return
    try:
        if err is None:
            finish_run_ok(conn, run_id, attempted, processed)
        else:
            finish_run_fail(conn, run_id, err, attempted, processed)
    except sqlite3.Error as exc:
        log.warning("run_record_failed", run_id=run_id, err=str(exc))


def _rules(rules: ClassifierRules | None) -> ClassifierRules:
    return rules or load_rules(settings.classifier_rules_path)


def ingest_rows(conn: sqlite3.Connection, day: date, rows: list[dict], rules: ClassifierRules | None = None) -> DailyWrite:
    """Classify one day's rows and run upsert + delta in a single transaction."""
    target = day.isoformat()
    try:
        values = classify_rows(rows, rules)
    except (ValueError, OverflowError) as exc:
        raise PersistenceError(f"classification failed: {exc}", stage="classify", target_date=target) from exc
    log.info(
        "daily_classified",
        target_date=target,
        rows=len(rows),
        tariff=values.tariff,
        total=values.total,
        total_source=values.total_source,
        contributing_rows=values.contributing_rows,
    )
    try:
        return ingest_day(conn, day, values.tariff, values.total, rows)
    except (sqlite3.Error, OverflowError) as exc:
        # OverflowError: value outside SQLite's 64-bit INTEGER range
        raise PersistenceError(f"daily upsert failed: {exc}", stage="upsert_daily", target_date=target) from exc


def run_daily_ingest(
    run_id: str | None = None,
    target_date: date | None = None,
    client: FiscalDataClient | None = None,
    rules: ClassifierRules | None = None,
) -> DailyIngestResult:
    run_id = run_id or str(uuid.uuid4())
    day = target_date or prev_working_day(settings.local_tz)
    target = day.isoformat()
    rules = _rules(rules)
    log.info("daily_ingest_started", run_id=run_id, target_date=target)

    conn, conn_error = _try_open_conn(target)
    _record_start(conn, run_id, "daily", target, target)
    owns_client = client is None
    client = client or FiscalDataClient()
    rows: list[dict] = []
    try:
        rows = client.fetch_day(day)
        if not rows:
            raise NoDataError("source returned no rows", stage="fetch_day", target_date=target)
        log.info("daily_rows_fetched", run_id=run_id, target_date=target, rows=len(rows))
        if conn is None:
            raise conn_error
        try:
            with held_lock(conn, INGEST_LOCK, run_id, settings.ingest_lock_ttl_seconds, target):
                write = ingest_rows(conn, day, rows, rules)
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc), stage="ingest_lock", target_date=target) from exc
    except NoDataError as exc:
        log.warning("daily_no_data", run_id=run_id, **exc.to_dict())
        _record_finish(conn, run_id, attempted=1, processed=0)
        return DailyIngestResult(run_id, target, "no_data")
    except (PersistenceError, RunLockedError) as exc:
        log.error("daily_ingest_failed", run_id=run_id, **exc.to_dict())
        try:
            save_raw_locally(day, rows)
        except OSError as save_exc:
            log.error("raw_save_failed", target_date=target, err=str(save_exc))
        _record_finish(conn, run_id, str(exc), attempted=1, processed=0)
        raise
    except IngestError as exc:
        log.error("daily_ingest_failed", run_id=run_id, **exc.to_dict())
        _record_finish(conn, run_id, str(exc), attempted=1, processed=0)
        raise
    else:
        _record_finish(conn, run_id, attempted=1, processed=1)
    finally:
        if owns_client:
            client.close()
        if conn is not None:
            conn.close()

    log.info("daily_ingest_finished", run_id=run_id, target_date=target, status="succeeded")
    return DailyIngestResult(
        run_id,
        target,
        "stored",
        tariff=write.tariff,
        total=write.total,
        delta_tariff=write.delta_tariff,
        delta_total=write.delta_total,
    )


def default_backfill_range() -> tuple[date, date]:
    return parse_iso_date(settings.backfill_default_start), local_today(settings.local_tz) - timedelta(days=1)


def run_backfill(
    run_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
    client: FiscalDataClient | None = None,
    rules: ClassifierRules | None = None,
) -> BackfillResult:
    run_id = run_id or str(uuid.uuid4())
    default_start, default_end = default_backfill_range()
    start = start or default_start
    end = end or default_end
    if start > end:
        raise ValueError(f"start {start} is after end {end}")
    target = f"{start.isoformat()}..{end.isoformat()}"
    rules = _rules(rules)
    log.info("backfill_started", run_id=run_id, target_date=target)

    conn, conn_error = _try_open_conn(target)
    _record_start(conn, run_id, "backfill", start.isoformat(), end.isoformat())
    owns_client = client is None
    client = client or FiscalDataClient()
    grouped: dict = {}
    try:
        rows = client.fetch_range(start, end)
        grouped = group_by_date(rows)
        log.info("backfill_grouped", run_id=run_id, rows=len(rows), dates=len(grouped))
        if conn is None:
            saved = save_all_raw(grouped)
            log.error("backfill_raw_saved", run_id=run_id, dates=len(saved))
            raise conn_error
        try:
            with held_lock(conn, INGEST_LOCK, run_id, settings.ingest_lock_ttl_seconds, target):
                result = backfill_dates(conn, grouped, rules)
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc), stage="ingest_lock", target_date=target) from exc
    except IngestError as exc:
        log.error("backfill_failed", run_id=run_id, **exc.to_dict())
        _record_finish(conn, run_id, str(exc), attempted=len(grouped) or None)
        raise
    else:
        if not result.ok:
            failure = PartialBackfillFailure(
                f"{len(result.failed_dates)} of {result.attempted} dates failed: {', '.join(result.failed_dates)}",
                result=result,
                target_date=target,
            )
            log.error("backfill_partial_failure", run_id=run_id, **failure.to_dict())
            _record_finish(conn, run_id, str(failure), result.attempted, result.processed)
            raise failure
        _record_finish(conn, run_id, attempted=result.attempted, processed=result.processed)
    finally:
        if owns_client:
            client.close()
        if conn is not None:
            conn.close()

    log.info("backfill_finished", run_id=run_id, attempted=result.attempted, processed=result.processed)
    return result


def run_recompute(run_id: str | None = None) -> dict:
    run_id = run_id or str(uuid.uuid4())
    conn = open_conn()
    _record_start(conn, run_id, "recompute", None, None)
    try:
        with held_lock(conn, INGEST_LOCK, run_id, settings.ingest_lock_ttl_seconds):
            counts = recompute_rollups(conn)
    except sqlite3.Error as exc:
        err = PersistenceError(str(exc), stage="recompute_rollups")
        log.error("recompute_failed", run_id=run_id, **err.to_dict())
        _record_finish(conn, run_id, str(err))
        raise err from exc
    except IngestError as exc:
        log.error("recompute_failed", run_id=run_id, **exc.to_dict())
        _record_finish(conn, run_id, str(exc))
        raise
    else:
        _record_finish(conn, run_id)
    finally:
        conn.close()
    return counts


def run_replay(target: Path, run_id: str | None = None, rules: ClassifierRules | None = None) -> tuple[list[DailyWrite], list[str]]:
    """Re-ingest side-channel files (single-day path, deltas included) without fetching."""
    run_id = run_id or str(uuid.uuid4())
    files = list_raw_files(Path(target))
    rules = _rules(rules)
    conn = open_conn()
    dates = [d.isoformat() for d, _ in files]
    _record_start(conn, run_id, "replay", dates[0] if dates else None, dates[-1] if dates else None)
    written: list[DailyWrite] = []
    failed: list[str] = []
    try:
        with held_lock(conn, INGEST_LOCK, run_id, settings.ingest_lock_ttl_seconds):
            for day, path in files:
                try:
                    written.append(ingest_rows(conn, day, load_raw(path), rules))
                except (IngestError, ValueError, OSError) as exc:
                    log.error("replay_failed", run_id=run_id, target_date=day.isoformat(), path=str(path), err=str(exc))
                    failed.append(day.isoformat())
    except IngestError as exc:
        _record_finish(conn, run_id, str(exc), len(files), len(written))
        raise
    else:
        err = f"failed dates: {', '.join(failed)}" if failed else None
        _record_finish(conn, run_id, err, len(files), len(written))
    finally:
        conn.close()
    log.info("replay_finished", run_id=run_id, files=len(files), written=len(written), failed=len(failed))
    return written, failed


def _run_in_background(fn, **kwargs):
    try:
        fn(**kwargs)
    except (IngestError, ValueError) as exc:
        # already logged and written to the runs table
        log.info("background_run_ended_with_error", run_id=kwargs.get("run_id"), err=str(exc))


def trigger_daily(background, target_date: date | None = None) -> str:
    run_id = str(uuid.uuid4())
    background.add_task(_run_in_background, run_daily_ingest, run_id=run_id, target_date=target_date)
    return run_id


def trigger_backfill(background, start: date, end: date) -> str:
    run_id = str(uuid.uuid4())
    background.add_task(_run_in_background, run_backfill, run_id=run_id, start=start, end=end)
    return run_id


def trigger_recompute(background) -> str:
    run_id = str(uuid.uuid4())
    background.add_task(_run_in_background, run_recompute, run_id=run_id)
    return run_id


def get_status(run_id: str):
    conn = open_conn()
    try:
        return get_run_status(conn, run_id)
    finally:
        conn.close()
