"""RFC3339 timestamps with nanosecond precision."""

import re
import time
from datetime import datetime, timedelta, timezone

from transcript_pipeline.errors import InvalidTimestamp

NANOS_PER_SECOND = 1_000_000_000

_RFC3339_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d{1,9}))?"
    r"(?P<tz>[Zz]|[+-]\d{2}:\d{2})$"
)


def format_rfc3339_nano(epoch_ns: int) -> str:
    """Format nanoseconds since the epoch as UTC RFC3339, trailing fraction zeros trimmed."""
    seconds, nanos = divmod(epoch_ns, NANOS_PER_SECOND)
    base = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    frac = f".{nanos:09d}".rstrip("0") if nanos else ""
    return f"{base}{frac}Z"


def parse_rfc3339_nano(value: str) -> int:
    """Parse an RFC3339 timestamp into nanoseconds since the epoch.

    Raises InvalidTimestamp if the value does not parse.
    """
    match = _RFC3339_RE.match(value or "")
    if not match:
        raise InvalidTimestamp(f"Invalid time value cannot be parsed: {value!r}")

    tz = match.group("tz")
    offset = "+00:00" if tz in ("Z", "z") else tz
    try:
        whole = datetime.fromisoformat(f"{match.group('date')}T{match.group('time')}{offset}")
    except ValueError as e:
        raise InvalidTimestamp(f"Invalid time value cannot be parsed: {value!r}", cause=e) from e

    nanos = int((match.group("frac") or "").ljust(9, "0") or 0)
    return int(whole.timestamp()) * NANOS_PER_SECOND + nanos


def now_ns() -> int:
    return time.time_ns()


def utc_now() -> str:
    """Current UTC time as an RFC3339-nanosecond string."""
    return format_rfc3339_nano(now_ns())


def nanos_to_timedelta(nanos: int) -> timedelta:
    return timedelta(microseconds=nanos // 1000)
