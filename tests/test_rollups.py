import random
import threading
import unittest
from datetime import date, timedelta

from fixtures import TempDbMixin

from tariff_tracker.db import get_conn
from tariff_tracker.pipeline.daily import ingest_day, read_daily
from tariff_tracker.pipeline.rollups import apply_delta, check_rollups, recompute_rollups


class DeltaTests(TempDbMixin, unittest.TestCase):
    def test_first_write_creates_buckets(self):
        write = ingest_day(self.conn, date(2025, 3, 14), 100, 500, [])
        self.assertEqual((write.delta_tariff, write.delta_total), (100, 500))
        self.assertTrue(write.rollups_changed)
        self.assertEqual(self.monthly(), {"2025-03-01": (100, 500)})
        self.assertEqual(self.yearly(), {2025: (100, 500)})

    def test_same_values_twice_is_a_no_op(self):
        ingest_day(self.conn, date(2025, 3, 14), 100, 500, [])
        stamp = self.conn.execute("SELECT updated_at FROM tariff_monthly").fetchone()[0]
        write = ingest_day(self.conn, date(2025, 3, 14), 100, 500, [])
        self.assertEqual((write.delta_tariff, write.delta_total), (0, 0))
        self.assertFalse(write.rollups_changed)
        self.assertEqual(self.monthly(), {"2025-03-01": (100, 500)})
        self.assertEqual(self.conn.execute("SELECT updated_at FROM tariff_monthly").fetchone()[0], stamp)

    def test_correction_moves_rollups_by_the_difference(self):
        ingest_day(self.conn, date(2025, 3, 13), 10, 5, [])
        ingest_day(self.conn, date(2025, 3, 14), 100, 500, [])
        write = ingest_day(self.conn, date(2025, 3, 14), 80, 500, [])
        self.assertEqual((write.delta_tariff, write.delta_total), (-20, 0))
        self.assertEqual(self.monthly(), {"2025-03-01": (90, 505)})
        self.assertEqual(self.yearly(), {2025: (90, 505)})
        self.assertEqual(read_daily(self.conn, date(2025, 3, 14)).tariff, 80)

    def test_null_counts_as_zero_in_deltas(self):
        ingest_day(self.conn, date(2025, 4, 1), 40, 200, [])
        write = ingest_day(self.conn, date(2025, 4, 1), None, 200, [])
        self.assertEqual(write.delta_tariff, -40)
        self.assertEqual(self.monthly(), {"2025-04-01": (0, 200)})
        stored = self.conn.execute("SELECT tariff_millions FROM tariff_daily WHERE dts_date='2025-04-01'").fetchone()
        self.assertIsNone(stored[0])

    def test_zero_delta_writes_nothing(self):
        self.assertFalse(apply_delta(self.conn, date(2025, 1, 2), 0, 0))
        self.assertEqual(self.monthly(), {})

    def test_days_land_in_their_own_month_and_year(self):
        ingest_day(self.conn, date(2024, 12, 31), 7, 70, [])
        ingest_day(self.conn, date(2025, 1, 2), 3, 30, [])
        self.assertEqual(self.monthly(), {"2024-12-01": (7, 70), "2025-01-01": (3, 30)})
        self.assertEqual(self.yearly(), {2024: (7, 70), 2025: (3, 30)})

    def test_raw_rows_are_kept(self):
        rows = [{"record_date": "2025-03-14", "transaction_catg": "Customs"}]
        ingest_day(self.conn, date(2025, 3, 14), 1, 1, rows)
        raw = self.conn.execute("SELECT raw FROM tariff_daily").fetchone()[0]
        self.assertIn("Customs", raw)


class RecomputeTests(TempDbMixin, unittest.TestCase):
    def _nonzero(self, table_rows):
        return {k: v for k, v in table_rows.items() if v != (0, 0)}

    def test_random_upserts_match_full_recompute(self):
        rng = random.Random(20250314)
        days = [date(2024, 12, 2) + timedelta(days=i) for i in range(75)]
        for i in range(300):
            day = rng.choice(days)
            tariff = None if rng.random() < 0.15 else rng.randint(-50, 500)
            total = None if rng.random() < 0.1 else rng.randint(0, 20000)
            ingest_day(self.conn, day, tariff, total, [])
            if i % 50 == 0:
                self.assertEqual(check_rollups(self.conn), [])
        self.assertEqual(check_rollups(self.conn), [])

        monthly_before = self._nonzero(self.monthly())
        yearly_before = self._nonzero(self.yearly())
        recompute_rollups(self.conn)
        self.assertEqual(self._nonzero(self.monthly()), monthly_before)
        self.assertEqual(self._nonzero(self.yearly()), yearly_before)
        self.assertEqual(check_rollups(self.conn), [])

    def test_recompute_repairs_drift(self):
        ingest_day(self.conn, date(2025, 2, 3), 11, 110, [])
        ingest_day(self.conn, date(2025, 2, 4), 9, 90, [])
        self.conn.execute("UPDATE tariff_monthly SET tariff_millions_sum = 999")
        mismatches = check_rollups(self.conn)
        self.assertEqual(len(mismatches), 1)
        self.assertEqual(mismatches[0]["granularity"], "month")
        self.assertEqual(mismatches[0]["bucket"], "2025-02-01")
        self.assertEqual(mismatches[0]["expected_tariff"], 20)
        self.assertEqual(mismatches[0]["stored_tariff"], 999)

        counts = recompute_rollups(self.conn)
        self.assertEqual(counts, {"months": 1, "years": 1})
        self.assertEqual(self.monthly(), {"2025-02-01": (20, 200)})
        self.assertEqual(check_rollups(self.conn), [])

    def test_missing_rollup_row_is_flagged(self):
        ingest_day(self.conn, date(2025, 5, 5), 4, 40, [])
        self.conn.execute("DELETE FROM tariff_yearly")
        mismatches = check_rollups(self.conn)
        self.assertEqual([(m["granularity"], m["bucket"]) for m in mismatches], [("year", "2025")])

    def test_recompute_on_empty_table(self):
        self.assertEqual(recompute_rollups(self.conn), {"months": 0, "years": 0})
        self.assertEqual(check_rollups(self.conn), [])


class ConcurrentWriterTests(TempDbMixin, unittest.TestCase):
    def test_overlapping_writers_on_one_date_keep_rollups_exact(self):
        day = date(2025, 6, 2)
        errors = []
        start = threading.Barrier(4)

        def writer(seed):
            conn = get_conn(self.db_path, timeout=30)
            rng = random.Random(seed)
            try:
                start.wait()
                for _ in range(25):
                    ingest_day(conn, day, rng.randint(0, 1000), rng.randint(0, 50000), [])
            except Exception as exc:
                errors.append(exc)
            finally:
                conn.close()

        threads = [threading.Thread(target=writer, args=(seed,)) for seed in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(check_rollups(self.conn), [])
        stored = read_daily(self.conn, day)
        self.assertEqual(self.monthly(), {"2025-06-01": (stored.tariff, stored.total)})
        self.assertEqual(self.yearly(), {2025: (stored.tariff, stored.total)})



if __name__ == "__main__":
    unittest.main()
