"""Lenient coercion helpers for records coming from unreliable upstreams."""
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional
import math
import time

# Anything below this is taken as epoch seconds rather than millis (year 5138 in seconds).
_SECONDS_CUTOFF = 100_000_000_000
# Last millisecond datetime can render (9999-12-31T23:59:59.999Z).
_MAX_TIMESTAMP_MS = 253_402_300_799_999


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def pick(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the first key present with a non-None value."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def coerce_str(value: Any, field: str, warnings: List[str]) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    warnings.append(f"{field}: coerced {type(value).__name__} to str")
    return str(value)


def coerce_float(value: Any, field: str, warnings: List[str], non_negative: bool = False) -> float:
    """Parse a number, defaulting to 0 and recording what was lost."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        warnings.append(f"{field}: boolean is not a number, using 0")
        return 0.0
    try:
        number = float(str(value).strip().replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError, OverflowError):
        warnings.append(f"{field}: could not parse {value!r}, using 0")
        return 0.0
    if not math.isfinite(number):
        warnings.append(f"{field}: non-finite value {value!r}, using 0")
        return 0.0
    if non_negative and number < 0:
        warnings.append(f"{field}: negative amount {number}, using absolute value")
        return -number
    return number


def coerce_int(value: Any, field: str, warnings: List[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        warnings.append(f"{field}: could not parse {value!r}")
        return None
    if not math.isfinite(number):
        warnings.append(f"{field}: non-finite value {value!r}")
        return None
    return int(number)


def coerce_timestamp_ms(value: Any, field: str, warnings: List[str]) -> Optional[int]:
    """Accept epoch seconds, epoch millis, ISO-8601 strings or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return _in_range(value.timestamp() * 1000, value, field, warnings)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            number = float(value)
        except OverflowError:
            warnings.append(f"{field}: timestamp {value!r} out of range")
            return None
    else:
        text = str(value).strip()
        try:
            number = float(text)
        except ValueError:
            # Exchange exports write "2023-01-10 08:00:00 UTC"
            if text.upper().endswith(" UTC"):
                text = text[:-4]
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                warnings.append(f"{field}: unparseable timestamp {value!r}")
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return _in_range(parsed.timestamp() * 1000, value, field, warnings)
    if not math.isfinite(number):
        warnings.append(f"{field}: non-finite timestamp {value!r}")
        return None
    if number < 0:
        warnings.append(f"{field}: negative timestamp {value!r}")
        return None
    if number < _SECONDS_CUTOFF:
        number *= 1000
    return _in_range(number, value, field, warnings)


def _in_range(ms: float, value: Any, field: str, warnings: List[str]) -> Optional[int]:
    if ms < 0 or ms > _MAX_TIMESTAMP_MS:
        warnings.append(f"{field}: timestamp {value!r} out of range")
        return None
    return int(ms)


def iso_from_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def year_from_ms(timestamp_ms: int) -> int:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).year


def date_from_ms(timestamp_ms: int) -> str:
    """Calendar date (UTC) as YYYY-MM-DD."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
