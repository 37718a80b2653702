"""Never-throwing value coercion: numbers, timestamps, statuses, sides.

Every helper here accepts whatever an untrusted source sent and returns a
usable value. Bad input degrades to a default, it never raises.
"""
import math
import re
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from shared.schemas import LegStatus, Side

Clock = Callable[[], int]

# Epoch values below this are seconds, not milliseconds
_MS_THRESHOLD = 1_000_000_000_000

_MONEY_RE = re.compile(
    r"^\s*"
    r"(?P<sign>[+-]?)\s*"
    r"(?P<open>\(?)\s*"
    r"[$€£]?\s*"
    r"(?P<num>\d[\d,]*\.?\d*(?:[eE][+-]?\d+)?|\.\d+)"
    r"\s*(?P<close>\)?)\s*%?\s*$"
)

# "2025-12-23 10:43:59.951647+11": the offset is dropped, not applied
_SQL_TS_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}(?:\.\d+)?)"
    r"(?P<tz>\s*(?:[+-]\d{2}(?::?\d{2})?|Z|UTC))?$"
)

_DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%b %d %Y %H:%M:%S",
]

_STATUS_MAP = {
    "OPEN": LegStatus.OPEN,
    "OPENED": LegStatus.OPEN,
    "ACTIVE": LegStatus.OPEN,
    "RUNNING": LegStatus.OPEN,
    "CLOSED": LegStatus.CLOSED,
    "CLOSE": LegStatus.CLOSED,
    "COMPLETED": LegStatus.CLOSED,
    "DONE": LegStatus.CLOSED,
    "PENDING": LegStatus.PENDING,
    "CANCELLED": LegStatus.CANCELLED,
    "CANCELED": LegStatus.CANCELLED,
    "FAILED": LegStatus.FAILED,
    "ERROR": LegStatus.FAILED,
}

_SIDE_MAP = {
    "BUY": Side.BUY,
    "B": Side.BUY,
    "BOUGHT": Side.BUY,
    "LONG": Side.BUY,
    "SELL": Side.SELL,
    "S": Side.SELL,
    "SOLD": Side.SELL,
    "SHORT": Side.SELL,
}


def now_ms() -> int:
    return int(time.time() * 1000)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def safe_float(value: Any, default: float = 0.0) -> float:
    """Parse a number, currency string or percentage; never NaN, never raises.

    Handles ``"$1,234.56"``, ``"+$12.30"``, ``"(4.50)"`` and ``"5.2%"``.
    """
    if is_empty(value) or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else default
    if not isinstance(value, str):
        return default

    m = _MONEY_RE.match(value)
    if not m:
        return default
    try:
        number = float(m.group("num").replace(",", ""))
    except ValueError:
        return default
    if not math.isfinite(number):
        return default
    if m.group("open") == "(" or m.group("close") == ")":
        number = -number
    if m.group("sign") == "-":
        number = -number
    return number


def optional_float(value: Any) -> Optional[float]:
    """Like safe_float but keeps "absent or unparseable" distinguishable."""
    if is_empty(value):
        return None
    number = safe_float(value, default=math.nan)
    return None if math.isnan(number) else number


def _to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        # Naive timestamps are read as UTC
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _epoch_to_ms(number: float) -> int:
    return int(number * 1000) if abs(number) < _MS_THRESHOLD else int(number)


def parse_timestamp(value: str, clock: Optional[Clock] = None) -> int:
    """Parse a timestamp string into epoch milliseconds.

    Order: ISO-8601, SQL-style ``YYYY-MM-DD HH:MM:SS[.ffffff][+TZ]`` with the
    zone suffix stripped, bare epoch numbers, a list of common date formats.
    Anything else falls back to the clock.
    """
    clock = clock or now_ms
    text = str(value).strip()
    if not text:
        return clock()

    if "T" in text or text.endswith("Z"):
        try:
            return _to_ms(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass

    m = _SQL_TS_RE.match(text)
    if m:
        try:
            return _to_ms(datetime.fromisoformat(" ".join(m.group("base").split())))
        except ValueError:
            pass

    number = optional_float(text) if re.fullmatch(r"[+-]?\d+(\.\d+)?", text) else None
    if number is not None:
        return _epoch_to_ms(number)

    for fmt in _DATE_FORMATS:
        try:
            return _to_ms(datetime.strptime(text, fmt))
        except ValueError:
            continue

    try:
        return _to_ms(datetime.fromisoformat(text))
    except ValueError:
        return clock()


def normalize_timestamp(value: Any, clock: Optional[Clock] = None) -> int:
    """Epoch milliseconds from seconds, millis, datetimes or strings."""
    clock = clock or now_ms
    if is_empty(value) or isinstance(value, bool):
        return clock()
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value == 0:
            return clock()
        return _epoch_to_ms(value)
    if isinstance(value, datetime):
        return _to_ms(value)
    if isinstance(value, date):
        return _to_ms(datetime(value.year, value.month, value.day))
    if isinstance(value, str):
        return parse_timestamp(value, clock)
    return clock()


def normalize_status(
    value: Any, default: Optional[LegStatus] = LegStatus.OPEN
) -> Optional[LegStatus]:
    if is_empty(value):
        return default
    return _STATUS_MAP.get(str(value).strip().upper(), default)


def normalize_side(value: Any) -> Optional[Side]:
    if is_empty(value):
        return None
    return _SIDE_MAP.get(str(value).strip().upper())


def clean_str(value: Any) -> Optional[str]:
    if is_empty(value):
        return None
    return str(value).strip()
