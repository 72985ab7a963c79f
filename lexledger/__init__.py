"""LexLedger: offline-first local store, sync queue and tamper-evident audit log.

Public API:
- Runtime: OfflineRuntime, LexLedgerConfig
- Store: DurableStore, EntityStore, IndexSpec, AutoBackup, create_backup, restore_backup
- Offline: SyncQueue, SyncEngine, ConnectivityMonitor, HttpBackendClient
- Audit: AuditLog, MerkleConsolidator, AuditCompactor, Sanitizer
- Core: dual_hash, emit_receipt, StopRule, errors
"""
from .audit import (
    AuditCompactor,
    AuditLog,
    HttpTimestampAuthority,
    MerkleConsolidator,
    Sanitizer,
    export_audit_logs,
    get_audit_stats,
)
from .config import LexLedgerConfig
from .core import (
    Clock,
    ConstraintError,
    ContractError,
    InvalidIndexError,
    LexLedgerError,
    StopRule,
    StorageError,
    dual_hash,
    emit_receipt,
)
from .offline import (
    ConnectivityMonitor,
    HttpBackendClient,
    RemoteError,
    SyncEngine,
    SyncQueue,
)
from .runtime import OfflineRuntime
from .store import AutoBackup, DurableStore, EntityStore, IndexSpec, create_backup, restore_backup
from .usage import UsageCounters

__version__ = "0.1.0"

__all__ = [
    # Runtime
    "OfflineRuntime",
    "LexLedgerConfig",
    "UsageCounters",
    # Store
    "DurableStore",
    "EntityStore",
    "IndexSpec",
    "AutoBackup",
    "create_backup",
    "restore_backup",
    # Offline
    "SyncQueue",
    "SyncEngine",
    "ConnectivityMonitor",
    "HttpBackendClient",
    "RemoteError",
    # Audit
    "AuditLog",
    "MerkleConsolidator",
    "AuditCompactor",
    "HttpTimestampAuthority",
    "Sanitizer",
    "export_audit_logs",
    "get_audit_stats",
    # Core
    "Clock",
    "dual_hash",
    "emit_receipt",
    "StopRule",
    "LexLedgerError",
    "StorageError",
    "ContractError",
    "InvalidIndexError",
    "ConstraintError",
]
