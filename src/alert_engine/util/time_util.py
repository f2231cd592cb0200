import re
from datetime import datetime, timedelta, timezone

TIMEZONE_INFO = timezone.utc

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$", re.IGNORECASE)
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def now_utc() -> datetime:
    return datetime.now(TIMEZONE_INFO)


def parse_duration(value):
    """
    Accept compact durations such as "30s", "5m", "1h", "1d".
    Anything else (timedelta, seconds as number, ISO 8601) is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    match = _DURATION_PATTERN.match(value)
    if not match:
        return value
    amount, unit = match.groups()
    return timedelta(seconds=float(amount) * _DURATION_UNITS[unit.lower()])
