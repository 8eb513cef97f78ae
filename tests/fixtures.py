import shutil
import tempfile
from pathlib import Path
from unittest import mock

from tariff_tracker.config import settings
from tariff_tracker.db import get_conn, migrate

TGA = "Treasury General Account (TGA)"


def dts_row(day, category, amount, transaction_type="Deposits", account_type=TGA):
    return {
        "record_date": day,
        "account_type": account_type,
        "transaction_type": transaction_type,
        "transaction_catg": category,
        "transaction_today_amt": None if amount is None else str(amount),
    }


class FakeFiscalClient:
    def __init__(self, day_rows=None, range_rows=None, error=None):
        self.day_rows = day_rows or []
        self.range_rows = range_rows or []
        self.error = error
        self.calls = []
        self.closed = False

    def fetch_day(self, day):
        self.calls.append(("day", day))
        if self.error:
            raise self.error
        return list(self.day_rows)

    def fetch_range(self, start, end):
        self.calls.append(("range", start, end))
        if self.error:
            raise self.error
        return list(self.range_rows)

    def close(self):
        self.closed = True


class TempDbMixin:
    """Temp SQLite file + raw dir, with settings pointed at both."""

    def setUp(self):
        super().setUp()
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir, ignore_errors=True)
        self.db_path = str(Path(self.tmpdir) / "tariffs.db")
        self.raw_dir = str(Path(self.tmpdir) / "raw")
        patcher = mock.patch.multiple(
            settings,
            db_path=self.db_path,
            raw_dir=self.raw_dir,
            fiscal_request_delay_seconds=0.0,
            classifier_rules_path=None,
        )
        patcher.start()
        self.addCleanup(patcher.stop)
        self.conn = get_conn(self.db_path)
        migrate(self.conn)
        self.addCleanup(self.conn.close)

    def monthly(self):
        rows = self.conn.execute(
            "SELECT month, tariff_millions_sum, total_deposits_millions_sum FROM tariff_monthly ORDER BY month"
        ).fetchall()
        return {r[0]: (r[1], r[2]) for r in rows}

    def yearly(self):
        rows = self.conn.execute(
            "SELECT year, tariff_millions_sum, total_deposits_millions_sum FROM tariff_yearly ORDER BY year"
        ).fetchall()
        return {r[0]: (r[1], r[2]) for r in rows}
