"""LexLedger runtime configuration.

All settings can be overridden via environment variables with the
LEXLEDGER_ prefix.
"""
import os
from dataclasses import dataclass, field
from typing import List

from .audit.sanitize import DEFAULT_SENSITIVE_FIELDS
from .core.constants import (
    AUTO_BACKUP_INTERVAL_SECONDS,
    BACKEND_TIMEOUT_SECONDS,
    CONSOLIDATED_RETENTION_DAYS,
    CONSOLIDATION_INTERVAL_SECONDS,
    CONSOLIDATION_MIN_EVENTS,
    DEFAULT_DAILY_LIMITS,
    DEFAULT_PROBE_PORT,
    DETAILED_RETENTION_DAYS,
    FALLBACK_CAPACITY,
    MASK_LENGTH,
    MAX_AUTO_BACKUPS,
    MERKLE_BATCH_SIZE,
    MERKLE_INTERVAL_SECONDS,
    SYNC_CLEANUP_DAYS,
    SYNC_INTERVAL_SECONDS,
    SYNC_MAX_ATTEMPTS,
)


def _env_bool(name: str) -> bool:
    return os.environ[name].lower() in ("1", "true", "yes")


@dataclass
class LexLedgerConfig:
    """Local store, sync and audit configuration."""

    # Storage
    data_dir: str = ".lexledger"
    max_bytes: int | None = None
    tenant_id: str = "default"

    # Backend
    backend_url: str = ""
    backend_api_key: str = ""
    backend_timeout: float = BACKEND_TIMEOUT_SECONDS
    probe_port: int = DEFAULT_PROBE_PORT

    # Sync
    sync_interval_seconds: int = SYNC_INTERVAL_SECONDS
    sync_max_attempts: int = SYNC_MAX_ATTEMPTS
    sync_cleanup_days: int = SYNC_CLEANUP_DAYS
    sync_on_write: bool = True

    # Merkle anchoring
    merkle_batch_size: int = MERKLE_BATCH_SIZE
    merkle_interval_seconds: int = MERKLE_INTERVAL_SECONDS
    timestamp_url: str = ""

    # Rollups and retention
    consolidation_min_events: int = CONSOLIDATION_MIN_EVENTS
    consolidation_interval_seconds: int = CONSOLIDATION_INTERVAL_SECONDS
    detailed_retention_days: int = DETAILED_RETENTION_DAYS
    consolidated_retention_days: int = CONSOLIDATED_RETENTION_DAYS

    # Backups
    backup_interval_seconds: int = AUTO_BACKUP_INTERVAL_SECONDS
    max_auto_backups: int = MAX_AUTO_BACKUPS

    # Sanitization
    sensitive_fields: List[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_FIELDS))
    mask_length: int = MASK_LENGTH
    fallback_capacity: int = FALLBACK_CAPACITY

    # Usage
    daily_limits: dict = field(default_factory=lambda: dict(DEFAULT_DAILY_LIMITS))

    @classmethod
    def from_env(cls) -> "LexLedgerConfig":
        """Load configuration from environment variables."""
        config = cls()

        # Storage
        if "LEXLEDGER_DATA_DIR" in os.environ:
            config.data_dir = os.environ["LEXLEDGER_DATA_DIR"]
        if "LEXLEDGER_MAX_BYTES" in os.environ:
            config.max_bytes = int(os.environ["LEXLEDGER_MAX_BYTES"])
        if "LEXLEDGER_TENANT_ID" in os.environ:
            config.tenant_id = os.environ["LEXLEDGER_TENANT_ID"]

        # Backend
        if "LEXLEDGER_BACKEND_URL" in os.environ:
            config.backend_url = os.environ["LEXLEDGER_BACKEND_URL"]
        if "LEXLEDGER_BACKEND_API_KEY" in os.environ:
            config.backend_api_key = os.environ["LEXLEDGER_BACKEND_API_KEY"]
        if "LEXLEDGER_BACKEND_TIMEOUT" in os.environ:
            config.backend_timeout = float(os.environ["LEXLEDGER_BACKEND_TIMEOUT"])

        # Sync
        if "LEXLEDGER_SYNC_INTERVAL" in os.environ:
            config.sync_interval_seconds = int(os.environ["LEXLEDGER_SYNC_INTERVAL"])
        if "LEXLEDGER_SYNC_MAX_ATTEMPTS" in os.environ:
            config.sync_max_attempts = int(os.environ["LEXLEDGER_SYNC_MAX_ATTEMPTS"])
        if "LEXLEDGER_SYNC_ON_WRITE" in os.environ:
            config.sync_on_write = _env_bool("LEXLEDGER_SYNC_ON_WRITE")

        # Merkle anchoring
        if "LEXLEDGER_MERKLE_BATCH_SIZE" in os.environ:
            config.merkle_batch_size = int(os.environ["LEXLEDGER_MERKLE_BATCH_SIZE"])
        if "LEXLEDGER_MERKLE_INTERVAL" in os.environ:
            config.merkle_interval_seconds = int(os.environ["LEXLEDGER_MERKLE_INTERVAL"])
        if "LEXLEDGER_TIMESTAMP_URL" in os.environ:
            config.timestamp_url = os.environ["LEXLEDGER_TIMESTAMP_URL"]

        # Backups
        if "LEXLEDGER_BACKUP_INTERVAL" in os.environ:
            config.backup_interval_seconds = int(os.environ["LEXLEDGER_BACKUP_INTERVAL"])
        if "LEXLEDGER_MAX_AUTO_BACKUPS" in os.environ:
            config.max_auto_backups = int(os.environ["LEXLEDGER_MAX_AUTO_BACKUPS"])

        # Sanitization
        if "LEXLEDGER_SENSITIVE_FIELDS" in os.environ:
            config.sensitive_fields = [
                p.strip() for p in os.environ["LEXLEDGER_SENSITIVE_FIELDS"].split(",") if p.strip()
            ]

        return config

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []

        if not self.data_dir:
            errors.append("data_dir must not be empty")

        if self.max_bytes is not None and self.max_bytes < 1:
            errors.append(f"max_bytes must be >= 1, got {self.max_bytes}")

        if self.backend_timeout <= 0:
            errors.append(f"backend_timeout must be > 0, got {self.backend_timeout}")

        if self.probe_port < 1 or self.probe_port > 65535:
            errors.append(f"Invalid probe_port: {self.probe_port}")

        if self.sync_max_attempts < 1:
            errors.append(f"sync_max_attempts must be >= 1, got {self.sync_max_attempts}")

        if self.sync_interval_seconds < 1:
            errors.append(f"sync_interval_seconds must be >= 1, got {self.sync_interval_seconds}")

        if self.merkle_batch_size < 1:
            errors.append(f"merkle_batch_size must be >= 1, got {self.merkle_batch_size}")

        if self.detailed_retention_days > self.consolidated_retention_days:
            errors.append("detailed_retention_days exceeds consolidated_retention_days")

        if self.backup_interval_seconds < 1:
            errors.append(f"backup_interval_seconds must be >= 1, got {self.backup_interval_seconds}")

        if self.max_auto_backups < 1:
            errors.append(f"max_auto_backups must be >= 1, got {self.max_auto_backups}")

        if self.mask_length < 1:
            errors.append(f"mask_length must be >= 1, got {self.mask_length}")

        if not self.sensitive_fields:
            errors.append("sensitive_fields must not be empty")

        return errors
