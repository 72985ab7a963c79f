"""LexLedger constants and thresholds.

All magic numbers live here. No exceptions.
Retry ceiling and Merkle thresholds are tunable defaults, not a tested SLA.
"""

# Sync queue
SYNC_MAX_ATTEMPTS = 5
SYNC_CLEANUP_DAYS = 7
SYNC_INTERVAL_SECONDS = 5 * 60
BACKEND_TIMEOUT_SECONDS = 10.0

# Queue entry statuses
STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Queue operations
OP_INSERT = "insert"
OP_UPDATE = "update"
OP_DELETE = "delete"
OPERATIONS = (OP_INSERT, OP_UPDATE, OP_DELETE)

# Durability modes for EntityStore.save/delete
MODE_LOCAL_ONLY = "local_only"
MODE_LOCAL_AND_QUEUE = "local_and_queue"
DURABILITY_MODES = (MODE_LOCAL_ONLY, MODE_LOCAL_AND_QUEUE)

# Sync engine states
ENGINE_IDLE = "idle"
ENGINE_SYNCING = "syncing"
ENGINE_COMPLETE = "complete"
ENGINE_PARTIAL = "partial"
ENGINE_ERROR = "error"
ENGINE_DEFERRED = "deferred"
ENGINE_BUSY = "busy"

# Merkle consolidation
MERKLE_BATCH_SIZE = 500
MERKLE_INTERVAL_SECONDS = 6 * 60 * 60

# Audit rollup and retention
CONSOLIDATION_MIN_EVENTS = 1000
CONSOLIDATION_INTERVAL_SECONDS = 24 * 60 * 60
DETAILED_RETENTION_DAYS = 90
CONSOLIDATED_RETENTION_DAYS = 5 * 365

# Audit fallback buffer
FALLBACK_CAPACITY = 100
FALLBACK_FILENAME = "audit-fallback.jsonl"

# Local backups
BACKUP_VERSION = "1.0"
BACKUP_DIRNAME = "backups"
BACKUP_MAX_BYTES = 50 * 1024 * 1024
AUTO_BACKUP_INTERVAL_SECONDS = 24 * 60 * 60
MAX_AUTO_BACKUPS = 7
ESSENTIAL_COLLECTIONS = ("clientes", "processos", "documentos", "jurisprudencias")

# Sanitization
MASK_CHAR = "*"
MASK_LENGTH = 8
MASK_MAX_VISIBLE = 2
SHORT_VALUE_MASK = "****"
REDACTION_MARKER = "[REDACTED]"

# Audit search defaults
SEARCH_DEFAULT_LIMIT = 100
EXPORT_LIMIT = 10000

# Usage counters
USAGE_WARNING_THRESHOLD = 0.7
USAGE_CRITICAL_THRESHOLD = 0.9
DEFAULT_DAILY_LIMITS = {
    "backend_requests": 500,
    "timestamp_requests": 100,
}

# Connectivity probe
DEFAULT_PROBE_HOST = "localhost"
DEFAULT_PROBE_PORT = 443
PROBE_TIMEOUT_SECONDS = 5.0
