"""Daily usage counters for metered remote calls and local storage.

Counters persist in the "meta" collection with the date of their last
reset; the first access on a new day zeroes them.
"""
from .core.clock import Clock
from .core.constants import (
    DEFAULT_DAILY_LIMITS,
    USAGE_CRITICAL_THRESHOLD,
    USAGE_WARNING_THRESHOLD,
)

META_COLLECTION = "meta"
USAGE_KEY = "usage_counters"


class UsageCounters:
    """Named daily counters with warning and critical thresholds.

    Attributes:
        substrate: DurableStore holding the counters record
        limits: Daily limit per counter name
    """

    def __init__(self, substrate, clock: Clock | None = None, limits: dict | None = None):
        self.substrate = substrate
        self.clock = clock or Clock()
        self.limits = dict(limits if limits is not None else DEFAULT_DAILY_LIMITS)

    def _today(self) -> str:
        return self.clock.peek().strftime("%Y-%m-%d")

    def _load(self) -> dict:
        record = self.substrate.get(META_COLLECTION, USAGE_KEY)
        today = self._today()
        if record is None or record.get("last_reset") != today:
            record = {"last_reset": today, "counters": {}}
        return record

    def track(self, name: str, amount: int = 1) -> int:
        """Add to a counter and return its value for today."""
        record = self._load()
        record["counters"][name] = record["counters"].get(name, 0) + amount
        self.substrate.put(META_COLLECTION, USAGE_KEY, record)
        return record["counters"][name]

    def get(self, name: str) -> int:
        return self._load()["counters"].get(name, 0)

    def reset(self) -> None:
        self.substrate.put(META_COLLECTION, USAGE_KEY, {"last_reset": self._today(), "counters": {}})

    def check_limits(self) -> dict:
        """Usage ratio per limited counter, plus local storage against the quota."""
        counters = self._load()["counters"]
        report = {}
        for name, limit in self.limits.items():
            report[name] = _ratio(counters.get(name, 0), limit)

        if self.substrate.max_bytes:
            report["storage_bytes"] = _ratio(self.substrate.size_bytes(), self.substrate.max_bytes)
        return report


def _ratio(used: int, limit: int) -> dict:
    ratio = used / limit if limit else 0.0
    return {
        "used": used,
        "limit": limit,
        "ratio": round(ratio, 4),
        "warning": ratio >= USAGE_WARNING_THRESHOLD,
        "critical": ratio >= USAGE_CRITICAL_THRESHOLD,
    }
