import json
import sqlite3
import unittest
from datetime import date
from pathlib import Path
from unittest import mock

from fixtures import FakeFiscalClient, TempDbMixin, dts_row

from tariff_tracker.config import settings
from tariff_tracker.errors import PersistenceError, RunLockedError, UpstreamFetchError
from tariff_tracker.pipeline.locking import INGEST_LOCK, acquire_lock, release_lock
from tariff_tracker.pipeline.orchestrator import run_daily_ingest, run_recompute, run_replay
from tariff_tracker.pipeline.raw_store import save_raw_locally
from tariff_tracker.pipeline.rollups import check_rollups
from tariff_tracker.pipeline.utils import get_run_status

DAY = date(2025, 3, 14)


def _day_rows(tariff="312", day="2025-03-14"):
    return [
        dts_row(day, "Customs and Certain Excise Taxes", tariff),
        dts_row(day, "Taxes - Withheld Individual/FICA", "500"),
        dts_row(day, "Total Deposits", "900"),
    ]


class DailyIngestTests(TempDbMixin, unittest.TestCase):
    def test_stores_day_and_rollups(self):
        client = FakeFiscalClient(day_rows=_day_rows())
        result = run_daily_ingest("run-1", DAY, client=client)
        self.assertEqual(result.status, "stored")
        self.assertEqual((result.tariff, result.total), (312, 900))
        self.assertEqual((result.delta_tariff, result.delta_total), (312, 900))
        self.assertEqual(self.monthly(), {"2025-03-01": (312, 900)})
        status = get_run_status(self.conn, "run-1")
        self.assertEqual(status["status"], "succeeded")
        self.assertEqual(status["kind"], "daily")
        self.assertEqual(status["range_start"], "2025-03-14")
        self.assertFalse(client.closed)

    def test_rerun_with_correction_applies_difference(self):
        run_daily_ingest("run-1", DAY, client=FakeFiscalClient(day_rows=_day_rows("100")))
        result = run_daily_ingest("run-2", DAY, client=FakeFiscalClient(day_rows=_day_rows("80")))
        self.assertEqual(result.delta_tariff, -20)
        self.assertEqual(result.delta_total, 0)
        self.assertEqual(self.yearly(), {2025: (80, 900)})

    def test_defaults_to_previous_working_day(self):
        client = FakeFiscalClient(day_rows=_day_rows())
        with mock.patch("tariff_tracker.pipeline.orchestrator.prev_working_day", return_value=DAY):
            result = run_daily_ingest(client=client)
        self.assertEqual(result.target_date, "2025-03-14")
        self.assertEqual(client.calls, [("day", DAY)])

    def test_no_rows_is_a_successful_empty_run(self):
        result = run_daily_ingest("run-empty", DAY, client=FakeFiscalClient(day_rows=[]))
        self.assertEqual(result.status, "no_data")
        self.assertEqual(self.conn.execute("SELECT COUNT(*) FROM tariff_daily").fetchone()[0], 0)
        status = get_run_status(self.conn, "run-empty")
        self.assertEqual(status["status"], "succeeded")
        self.assertEqual(status["dates_processed"], 0)

    def test_fetch_failure_records_failed_run(self):
        err = UpstreamFetchError("maintenance", stage="fetch_page_1", target_date="2025-03-14", status_code=503)
        with self.assertRaises(UpstreamFetchError):
            run_daily_ingest("run-up", DAY, client=FakeFiscalClient(error=err))
        status = get_run_status(self.conn, "run-up")
        self.assertEqual(status["status"], "failed")
        self.assertIn("fetch_page_1", status["error_message"])
        self.assertFalse(Path(self.raw_dir).exists())

    def test_db_write_failure_saves_raw_rows(self):
        rows = _day_rows()
        with mock.patch(
            "tariff_tracker.pipeline.orchestrator.ingest_day",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            with self.assertRaises(PersistenceError) as ctx:
                run_daily_ingest("run-db", DAY, client=FakeFiscalClient(day_rows=rows))
        self.assertEqual(ctx.exception.stage, "upsert_daily")
        saved = Path(self.raw_dir) / "2025-03-14.json"
        self.assertEqual(json.loads(saved.read_text(encoding="utf-8")), rows)
        self.assertEqual(get_run_status(self.conn, "run-db")["status"], "failed")
        self.assertEqual(self.monthly(), {})

    def test_unreachable_db_saves_raw_rows(self):
        blocker = Path(self.tmpdir) / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        rows = _day_rows()
        with mock.patch.object(settings, "db_path", str(blocker / "tariffs.db")):
            with self.assertRaises(PersistenceError) as ctx:
                run_daily_ingest("run-nodb", DAY, client=FakeFiscalClient(day_rows=rows))
        self.assertEqual(ctx.exception.stage, "connect")
        self.assertTrue((Path(self.raw_dir) / "2025-03-14.json").exists())

    def test_amount_beyond_integer_range_fails_cleanly(self):
        rows = [
            dts_row("2025-03-14", "Customs and Certain Excise Taxes", "9" * 20),
            dts_row("2025-03-14", "Total Deposits", "900"),
        ]
        with self.assertRaises(PersistenceError) as ctx:
            run_daily_ingest("run-big", DAY, client=FakeFiscalClient(day_rows=rows))
        self.assertEqual(ctx.exception.stage, "upsert_daily")
        self.assertEqual(get_run_status(self.conn, "run-big")["status"], "failed")
        self.assertTrue((Path(self.raw_dir) / "2025-03-14.json").exists())
        self.assertEqual(self.conn.execute("SELECT COUNT(*) FROM tariff_daily").fetchone()[0], 0)
        self.assertEqual(self.monthly(), {})

    def test_infinite_amount_is_stored_as_null(self):
        rows = [
            dts_row("2025-03-14", "Customs and Certain Excise Taxes", "9" * 400),
            dts_row("2025-03-14", "Total Deposits", "900"),
        ]
        result = run_daily_ingest("run-inf", DAY, client=FakeFiscalClient(day_rows=rows))
        self.assertEqual(result.status, "stored")
        self.assertIsNone(result.tariff)
        self.assertEqual(result.total, 900)
        self.assertEqual(get_run_status(self.conn, "run-inf")["status"], "succeeded")

    def test_held_lock_blocks_second_run(self):
        self.assertTrue(acquire_lock(self.conn, INGEST_LOCK, "other-run"))
        self.addCleanup(release_lock, self.conn, INGEST_LOCK, "other-run")
        with self.assertRaises(RunLockedError):
            run_daily_ingest("run-locked", DAY, client=FakeFiscalClient(day_rows=_day_rows()))
        self.assertEqual(get_run_status(self.conn, "run-locked")["status"], "failed")
        self.assertTrue((Path(self.raw_dir) / "2025-03-14.json").exists())

    def test_expired_lock_is_taken_over(self):
        self.assertTrue(acquire_lock(self.conn, INGEST_LOCK, "crashed-run", ttl_seconds=-1))
        result = run_daily_ingest("run-after", DAY, client=FakeFiscalClient(day_rows=_day_rows()))
        self.assertEqual(result.status, "stored")
        self.assertEqual(self.conn.execute("SELECT COUNT(*) FROM locks").fetchone()[0], 0)


class RecomputeAndReplayTests(TempDbMixin, unittest.TestCase):
    def test_recompute_run(self):
        run_daily_ingest("run-1", DAY, client=FakeFiscalClient(day_rows=_day_rows()))
        self.conn.execute("DELETE FROM tariff_monthly")
        counts = run_recompute("rc-1")
        self.assertEqual(counts, {"months": 1, "years": 1})
        self.assertEqual(check_rollups(self.conn), [])
        self.assertEqual(get_run_status(self.conn, "rc-1")["status"], "succeeded")

    def test_replay_applies_saved_files_with_deltas(self):
        save_raw_locally(date(2025, 3, 13), _day_rows("10", "2025-03-13"), failed=True)
        save_raw_locally(DAY, _day_rows("20"))
        written, failed = run_replay(Path(self.raw_dir), "rp-1")
        self.assertEqual(failed, [])
        self.assertEqual([w.day for w in written], [date(2025, 3, 13), DAY])
        self.assertEqual(self.monthly(), {"2025-03-01": (30, 1800)})
        status = get_run_status(self.conn, "rp-1")
        self.assertEqual((status["dates_attempted"], status["dates_processed"]), (2, 2))

    def test_replay_reports_unreadable_file(self):
        Path(self.raw_dir).mkdir(parents=True)
        (Path(self.raw_dir) / "2025-03-13.json").write_text("{broken", encoding="utf-8")
        save_raw_locally(DAY, _day_rows("20"))
        written, failed = run_replay(Path(self.raw_dir), "rp-2")
        self.assertEqual(failed, ["2025-03-13"])
        self.assertEqual(len(written), 1)
        self.assertEqual(get_run_status(self.conn, "rp-2")["status"], "failed")


if __name__ == "__main__":
    unittest.main()
