import time as time_module
from datetime import datetime, timedelta, timezone
from dateutil import tz

DAY_MS = 24 * 60 * 60 * 1000

def now_ms() -> int:
    return int(time_module.time() * 1000)

def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def ms_to_iso(ts_ms: float) -> str:
    """UTC ISO-8601 with millisecond precision and a trailing Z."""
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")

def _local_datetime(ts_ms: int, local_tz: str) -> datetime:
    tzinfo = tz.gettz(local_tz)
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).astimezone(tzinfo)

def start_of_local_day_ms(ts_ms: int, local_tz: str) -> int:
    loc = _local_datetime(ts_ms, local_tz)
    midnight = loc.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)

def next_local_midnight_ms(ts_ms: int, local_tz: str) -> int:
    loc = _local_datetime(ts_ms, local_tz)
    # Calendar-day arithmetic on the naive wall clock keeps DST days at 23/25h.
    tomorrow = (loc.replace(tzinfo=None) + timedelta(days=1)).date()
    midnight = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=loc.tzinfo)
    return int(midnight.timestamp() * 1000)

def coerce_float(val):
    if val is None:
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None
