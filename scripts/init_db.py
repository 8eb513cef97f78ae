from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from tariff_tracker.db import get_conn, migrate
from tariff_tracker.config import settings

if __name__ == '__main__':
    conn = get_conn(settings.db_path, timeout=settings.db_connect_timeout_seconds)
    migrate(conn)
    daily_count = conn.execute("SELECT COUNT(*) FROM tariff_daily").fetchone()[0]
    print('DB ready at', settings.db_path, '| daily rows:', daily_count)
