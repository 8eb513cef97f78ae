import time as time_module
from datetime import datetime, date, timedelta, timezone
from dateutil import tz

def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def local_today(local_tz: str, now_utc: datetime | None = None) -> date:
    tzinfo = tz.gettz(local_tz)
    now_utc = now_utc or datetime.now(timezone.utc)
    return now_utc.astimezone(tzinfo).date()

def prev_working_day(local_tz: str, now_utc: datetime | None = None) -> date:
    """Yesterday in local_tz, stepped back over Saturday/Sunday."""
    day = local_today(local_tz, now_utc) - timedelta(days=1)
    while day.weekday() > 4:
        day -= timedelta(days=1)
    return day

def parse_iso_date(value: str) -> date:
    return date.fromisoformat(str(value).strip()[:10])

def month_key(day: date) -> str:
    return day.replace(day=1).isoformat()


class RateLimiter:
    def __init__(self, min_interval_seconds: float):
        self.min_interval_seconds = float(min_interval_seconds or 0.0)
        self._last_call = None

    def wait(self):
        if self.min_interval_seconds <= 0:
            return
        now = time_module.monotonic()
        if self._last_call is None:
            self._last_call = now
            return
        sleep_for = self.min_interval_seconds - (now - self._last_call)
        if sleep_for > 0:
            time_module.sleep(sleep_for)
        self._last_call = time_module.monotonic()
