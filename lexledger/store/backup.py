"""Backup and restore of the local entity collections.

A backup is one JSON document: a "_metadata" header (timestamp, version,
type, collections, item_counts, total_size) plus one list of records per
collection. Full backups cover every collection of the store; quick
backups only the essential ones. AutoBackup keeps a rotated set of
backups under <data_dir>/backups, newest first.
"""
import json
import logging
import os
from datetime import timedelta
from pathlib import Path

from ..core.clock import Clock, parse_iso
from ..core.constants import (
    AUTO_BACKUP_INTERVAL_SECONDS,
    BACKUP_MAX_BYTES,
    BACKUP_VERSION,
    ESSENTIAL_COLLECTIONS,
    MAX_AUTO_BACKUPS,
)
from ..core.errors import ContractError, LexLedgerError, StorageError
from ..core.receipt import emit_receipt
from .entity import EntityStore

logger = logging.getLogger(__name__)

METADATA_KEY = "_metadata"
BACKUP_FULL = "full"
BACKUP_QUICK = "quick"
BACKUP_AUTO = "auto"


def _file_stamp(timestamp: str) -> str:
    return timestamp.replace(":", "-").replace(".", "-")


def create_backup(
    store: EntityStore,
    collections: list[str] | None = None,
    backup_type: str = BACKUP_FULL,
    clock: Clock | None = None,
    tenant_id: str = "default",
) -> dict:
    """Snapshot collections into a backup document.

    Args:
        store: EntityStore to read from
        collections: Collections to include (default: all of the store's)
        backup_type: "full", "quick" or "auto"

    Returns:
        Backup dict with "_metadata" and one record list per collection
    """
    clock = clock or store.clock
    names = list(collections) if collections is not None else store.collections()

    backup: dict = {}
    total_size = 0
    for name in names:
        records = store.get_all(name)
        backup[name] = records
        total_size += len(json.dumps(records, ensure_ascii=False).encode("utf-8"))

    if total_size > BACKUP_MAX_BYTES:
        logger.warning("Backup size %d bytes exceeds the %d byte limit", total_size, BACKUP_MAX_BYTES)

    metadata = {
        "timestamp": clock.now_iso(),
        "version": BACKUP_VERSION,
        "type": backup_type,
        "collections": names,
        "item_counts": {name: len(backup[name]) for name in names},
        "total_size": total_size,
    }
    backup[METADATA_KEY] = metadata

    emit_receipt("backup_created", {
        "tenant_id": tenant_id,
        "type": backup_type,
        "item_counts": metadata["item_counts"],
        "total_size": total_size,
    })
    return backup


def create_quick_backup(store: EntityStore, clock: Clock | None = None, tenant_id: str = "default") -> dict:
    """Backup of the essential collections only."""
    names = [name for name in ESSENTIAL_COLLECTIONS if name in store.collections()]
    return create_backup(store, names, BACKUP_QUICK, clock, tenant_id)


def write_backup(backup: dict, path: str | Path) -> int:
    """Write a backup atomically. Returns its size in bytes."""
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    content = json.dumps(backup, ensure_ascii=False, sort_keys=True)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        raise StorageError(f"Cannot write backup {path}: {e}") from e
    return len(content.encode("utf-8"))


def read_backup(path: str | Path) -> dict:
    """Load a backup document written by write_backup."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            backup = json.load(f)
    except OSError as e:
        raise StorageError(f"Cannot read backup {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ContractError(f"Backup {path} is not valid JSON: {e}") from e

    if not isinstance(backup, dict):
        raise ContractError(f"Backup {path} must be a JSON object")
    return backup


def restore_backup(
    store: EntityStore,
    backup: dict,
    collections: list[str] | None = None,
    clear_existing: bool = False,
    tenant_id: str = "default",
) -> dict:
    """Write a backup's records back into the store.

    Restored records keep their updated_at and are not queued for sync.
    A collection that fails to restore is reported in errors; the others
    are still restored.

    Args:
        store: EntityStore to write into
        backup: Backup dict (see create_backup)
        collections: Collections to restore (default: those in the backup)
        clear_existing: Drop current records of each restored collection first

    Returns:
        Dict with success, restored_collections, item_counts, errors, metadata
    """
    if not isinstance(backup, dict):
        raise ContractError("Backup must be a dict")

    available = [key for key in backup if key != METADATA_KEY]
    metadata = backup.get(METADATA_KEY) or {
        "timestamp": None,
        "version": "unknown",
        "type": "unknown",
        "collections": available,
        "item_counts": {},
    }
    names = collections or metadata.get("collections") or available

    result = {
        "success": True,
        "restored_collections": [],
        "item_counts": {},
        "errors": [],
        "metadata": metadata,
    }
    for name in names:
        records = backup.get(name)
        if records is None:
            logger.warning("Collection %s not in backup, skipping", name)
            continue
        if not isinstance(records, list):
            result["errors"].append({"collection": name, "error": "records must be a list"})
            continue
        try:
            count = store.load_records(name, records, clear_existing=clear_existing)
        except LexLedgerError as e:
            logger.error("Restoring %s failed: %s", name, e)
            result["errors"].append({"collection": name, "error": str(e)})
            continue
        result["restored_collections"].append(name)
        result["item_counts"][name] = count

    result["success"] = not result["errors"]

    emit_receipt("backup_restored", {
        "tenant_id": tenant_id,
        "success": result["success"],
        "item_counts": result["item_counts"],
        "errors": len(result["errors"]),
        "backup_timestamp": metadata.get("timestamp"),
    })
    return result


class AutoBackup:
    """Periodic rotated backups in a directory.

    Files are named auto_<timestamp>.json, so name order is age order.

    Attributes:
        store: EntityStore to back up
        directory: Directory holding the backup files
        interval: Minimum time between automatic backups
        max_backups: Number of backups kept after rotation
        collections: Collections included (default: the essential ones)
    """

    def __init__(
        self,
        store: EntityStore,
        directory: str | Path,
        clock: Clock | None = None,
        interval_seconds: int = AUTO_BACKUP_INTERVAL_SECONDS,
        max_backups: int = MAX_AUTO_BACKUPS,
        collections: list[str] | None = None,
        tenant_id: str = "default",
    ):
        self.store = store
        self.directory = Path(directory)
        self.clock = clock or store.clock
        self.interval = timedelta(seconds=interval_seconds)
        self.max_backups = max_backups
        self.collections = collections
        self.tenant_id = tenant_id

    def _paths(self) -> list[Path]:
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob("auto_*.json"), reverse=True)

    def list_backups(self) -> list[dict]:
        """Stored automatic backups, newest first."""
        backups = []
        for path in self._paths():
            metadata = read_backup(path).get(METADATA_KEY, {})
            backups.append({
                "id": path.stem,
                "path": str(path),
                "size": path.stat().st_size,
                "timestamp": metadata.get("timestamp"),
                "item_counts": metadata.get("item_counts", {}),
            })
        return backups

    def get(self, backup_id: str) -> dict:
        path = self.directory / f"{backup_id}.json"
        if not path.exists():
            raise ContractError(f"Unknown backup: {backup_id}")
        return read_backup(path)

    def is_due(self) -> bool:
        paths = self._paths()
        if not paths:
            return True
        last = read_backup(paths[0]).get(METADATA_KEY, {}).get("timestamp")
        if last is None:
            return True
        return self.clock.peek() - parse_iso(last) >= self.interval

    def perform(self) -> dict:
        """Write a new backup now and rotate old ones.

        Returns:
            Entry with id, path, size, timestamp, item_counts and removed
        """
        if self.collections is not None:
            backup = create_backup(self.store, self.collections, BACKUP_AUTO, self.clock, self.tenant_id)
        else:
            names = [n for n in ESSENTIAL_COLLECTIONS if n in self.store.collections()]
            backup = create_backup(self.store, names, BACKUP_AUTO, self.clock, self.tenant_id)

        metadata = backup[METADATA_KEY]
        path = self.directory / f"auto_{_file_stamp(metadata['timestamp'])}.json"
        size = write_backup(backup, path)
        removed = self.cleanup_old()

        return {
            "id": path.stem,
            "path": str(path),
            "size": size,
            "timestamp": metadata["timestamp"],
            "item_counts": metadata["item_counts"],
            "removed": removed,
        }

    def maybe_backup(self) -> dict | None:
        if not self.is_due():
            return None
        return self.perform()

    def cleanup_old(self, max_backups: int | None = None) -> int:
        """Delete all but the newest max_backups files. Returns how many went."""
        keep = self.max_backups if max_backups is None else max_backups
        stale = self._paths()[keep:]
        for path in stale:
            try:
                path.unlink()
            except OSError as e:
                raise StorageError(f"Cannot remove backup {path}: {e}") from e

        if stale:
            emit_receipt("backup_rotation", {
                "tenant_id": self.tenant_id,
                "removed": [p.stem for p in stale],
                "kept": keep,
            })
        return len(stale)
