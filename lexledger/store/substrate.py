"""Append-only durable substrate shared by the store, queue and audit log.

Each named collection is one JSONL log file under the data directory.
Lines are "put", "del" or "seq" operations; the log is replayed into
memory on first access and appended to (under an exclusive file lock) on
every write. Compaction rewrites a log to one line per live key through an
atomic rename.

Components never share a collection: the substrate is the only shared
resource, partitioned by name.
"""
import copy
import fcntl
import json
import logging
import os
import re
from pathlib import Path

from ..core.errors import ContractError, StorageError

logger = logging.getLogger(__name__)

COLLECTION_NAME = re.compile(r"^[a-z][a-z0-9_]*$")

# Auto-compact once a log carries this many lines and is mostly dead
COMPACT_MIN_LINES = 1000
COMPACT_DEAD_RATIO = 4


class DurableStore:
    """Collection-partitioned key/value storage backed by JSONL logs.

    Attributes:
        root: Data directory holding one <collection>.jsonl per collection
        max_bytes: Optional quota over all logs; exceeding it raises StorageError
    """

    def __init__(self, root: str | Path = ".lexledger", max_bytes: int | None = None):
        self.root = Path(root)
        self.max_bytes = max_bytes
        self._data: dict[str, dict] = {}
        self._sequences: dict[str, int] = {}
        self._line_counts: dict[str, int] = {}
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self.root}: {e}") from e

    def path_for(self, collection: str) -> Path:
        if not COLLECTION_NAME.match(collection):
            raise ContractError(f"Invalid collection name: {collection!r}")
        return self.root / f"{collection}.jsonl"

    def _load(self, collection: str) -> dict:
        if collection in self._data:
            return self._data[collection]

        path = self.path_for(collection)
        data: dict = {}
        sequence = 0
        lines = 0

        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    for raw in f:
                        raw = raw.strip()
                        if not raw:
                            continue
                        try:
                            op = json.loads(raw)
                        except json.JSONDecodeError:
                            # Torn trailing write from a crash; the rest of the log is intact
                            logger.warning("Skipping unreadable line in %s", path)
                            continue
                        lines += 1
                        kind = op.get("op")
                        key = op.get("key")
                        if kind == "put":
                            data[key] = op["value"]
                        elif kind == "del":
                            data.pop(key, None)
                        elif kind == "seq":
                            sequence = max(sequence, int(op["value"]))
                        if isinstance(key, int):
                            sequence = max(sequence, key)
            except OSError as e:
                raise StorageError(f"Cannot read {path}: {e}") from e

        self._data[collection] = data
        self._sequences[collection] = sequence
        self._line_counts[collection] = lines
        return data

    def _append(self, collection: str, op: dict, enforce_quota: bool = True) -> None:
        path = self.path_for(collection)
        line = json.dumps(op, sort_keys=True, ensure_ascii=False) + "\n"
        encoded = line.encode("utf-8")

        if enforce_quota and self.max_bytes is not None:
            if self.size_bytes() + len(encoded) > self.max_bytes:
                raise StorageError(
                    f"Storage quota exceeded: {self.max_bytes} bytes"
                )

        try:
            with open(path, "ab") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    f.write(encoded)
                    f.flush()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e

        self._line_counts[collection] = self._line_counts.get(collection, 0) + 1

    def get(self, collection: str, key):
        value = self._load(collection).get(key)
        return copy.deepcopy(value)

    def contains(self, collection: str, key) -> bool:
        return key in self._load(collection)

    def items(self, collection: str) -> list[tuple]:
        """All (key, value) pairs sorted by key."""
        data = self._load(collection)
        return [(k, copy.deepcopy(v)) for k, v in sorted(data.items(), key=lambda kv: kv[0])]

    def values(self, collection: str) -> list:
        return [v for _, v in self.items(collection)]

    def scan(self, collection: str):
        """Iterate live values without copying. Callers must not mutate them."""
        return iter(list(self._load(collection).values()))

    def count(self, collection: str) -> int:
        return len(self._load(collection))

    def put(self, collection: str, key, value) -> None:
        data = self._load(collection)
        self._append(collection, {"op": "put", "key": key, "value": value})
        data[key] = copy.deepcopy(value)
        if isinstance(key, int):
            self._sequences[collection] = max(self._sequences[collection], key)
        self._maybe_compact(collection)

    def delete(self, collection: str, key) -> bool:
        data = self._load(collection)
        if key not in data:
            return False
        self._append(collection, {"op": "del", "key": key})
        del data[key]
        self._maybe_compact(collection)
        return True

    def restore(self, collection: str, key, previous) -> None:
        """Put back the value a key held before a write; None removes the key.

        Undoing a write is exempt from the quota so a failed multi-step
        mutation can always be rolled back.
        """
        data = self._load(collection)
        if previous is None:
            if key in data:
                self._append(collection, {"op": "del", "key": key}, enforce_quota=False)
                del data[key]
            return
        self._append(collection, {"op": "put", "key": key, "value": previous}, enforce_quota=False)
        data[key] = copy.deepcopy(previous)

    def next_sequence(self, collection: str) -> int:
        """Reserve the next auto-increment integer key for a collection."""
        self._load(collection)
        self._sequences[collection] += 1
        return self._sequences[collection]

    def _maybe_compact(self, collection: str) -> None:
        lines = self._line_counts.get(collection, 0)
        live = len(self._data.get(collection, {}))
        if lines >= COMPACT_MIN_LINES and lines > COMPACT_DEAD_RATIO * max(live, 1):
            self.compact(collection)

    def compact(self, collection: str) -> int:
        """Rewrite a log with one line per live key.

        Returns:
            Number of lines in the compacted log
        """
        data = self._load(collection)
        path = self.path_for(collection)
        tmp_path = path.with_suffix(".jsonl.tmp")

        lines = [json.dumps({"op": "seq", "value": self._sequences[collection]}) + "\n"]
        for key, value in data.items():
            lines.append(json.dumps({"op": "put", "key": key, "value": value},
                                    sort_keys=True, ensure_ascii=False) + "\n")

        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    f.writelines(lines)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Cannot compact {path}: {e}") from e

        self._line_counts[collection] = len(lines)
        return len(lines)

    def size_bytes(self) -> int:
        """Bytes used by all logs in the data directory."""
        total = 0
        try:
            for path in self.root.glob("*.jsonl"):
                total += path.stat().st_size
        except OSError as e:
            raise StorageError(f"Cannot stat {self.root}: {e}") from e
        return total

    def collections(self) -> list[str]:
        names = {p.stem for p in self.root.glob("*.jsonl") if COLLECTION_NAME.match(p.stem)}
        names.update(self._data)
        return sorted(names)
