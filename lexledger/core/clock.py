"""UTC timestamps with strictly increasing issue order.

Every write stamps records with Clock.now_iso(). Two writes in the same
microsecond still get distinct, ordered stamps, so updated_at ordering and
Merkle batch ordering never tie.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format as fixed-width UTC ISO-8601 so lexical order is time order."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_iso(value: str) -> datetime:
    """Parse ISO-8601 timestamps or plain dates into aware UTC datetimes."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Clock:
    """Monotonic UTC clock.

    Args:
        source: Callable returning an aware datetime (defaults to utcnow)
    """

    def __init__(self, source: Callable[[], datetime] | None = None):
        self._source = source or utcnow
        self._last: datetime | None = None

    def now(self) -> datetime:
        current = self._source()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        if self._last is not None and current <= self._last:
            current = self._last + _TICK
        self._last = current
        return current

    def now_iso(self) -> str:
        return to_iso(self.now())

    def peek(self) -> datetime:
        """Current source time without consuming a tick."""
        current = self._source()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current
