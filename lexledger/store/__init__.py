"""Local durable storage: JSONL substrate, the indexed entity mirror and backups."""
from .substrate import DurableStore
from .schema import DEFAULT_SCHEMA, RESERVED_COLLECTIONS, IndexSpec
from .entity import EntityStore
from .backup import AutoBackup, create_backup, create_quick_backup, read_backup, restore_backup, write_backup

__all__ = [
    "DurableStore",
    "DEFAULT_SCHEMA",
    "RESERVED_COLLECTIONS",
    "IndexSpec",
    "EntityStore",
    "AutoBackup",
    "create_backup",
    "create_quick_backup",
    "read_backup",
    "restore_backup",
    "write_backup",
]
