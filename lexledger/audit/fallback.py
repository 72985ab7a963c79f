"""Best-effort fallback buffer for audit events that failed to persist.

Lives outside the durable substrate in its own small JSONL file, capped at
a fixed number of records (oldest dropped), so audit intent survives a
substrate outage. Writing here never raises: a failure is logged and the
caller still re-raises the original storage error.
"""
import json
import logging
import os
from pathlib import Path

from ..core.constants import FALLBACK_CAPACITY

logger = logging.getLogger(__name__)


class FallbackBuffer:
    """Bounded JSONL buffer.

    Attributes:
        path: Buffer file
        capacity: Maximum records kept
    """

    def __init__(self, path: str | Path, capacity: int = FALLBACK_CAPACITY):
        self.path = Path(path)
        self.capacity = capacity

    def read_all(self) -> list[dict]:
        if not self.path.exists():
            return []
        records = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records

    def append(self, record: dict) -> bool:
        """Add a record, dropping the oldest beyond capacity.

        Returns:
            True if the record was written
        """
        try:
            records = self.read_all()
            records.append(record)
            records = records[-self.capacity:]

            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                for item in records:
                    f.write(json.dumps(item, sort_keys=True, default=str) + "\n")
            os.replace(tmp_path, self.path)
            return True
        except (OSError, ValueError):
            logger.exception("Audit fallback buffer write failed: %s", self.path)
            return False

    def clear(self) -> int:
        count = len(self.read_all())
        if self.path.exists():
            self.path.unlink()
        return count

    def __len__(self) -> int:
        return len(self.read_all())
