"""Runtime wiring for the local store, sync and audit layers.

OfflineRuntime assembles every component over one data directory and one
clock, connects the hooks between them and exposes tick() for the host's
periodic timer (sync interval, Merkle interval, daily rollups and backups).
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

from .audit.anchor import MerkleConsolidator
from .audit.compact import AuditCompactor
from .audit.events import AuditLog
from .audit.fallback import FallbackBuffer
from .audit.sanitize import Sanitizer
from .audit.timestamp import HttpTimestampAuthority, TimestampAuthority
from .config import LexLedgerConfig
from .core.clock import Clock
from .core.constants import BACKUP_DIRNAME, FALLBACK_FILENAME
from .core.errors import ContractError
from .offline.backend import BackendClient, HttpBackendClient
from .offline.queue import SyncQueue
from .offline.reconnect import ConnectivityMonitor, tcp_probe
from .offline.sync import SyncEngine
from .store.backup import AutoBackup
from .store.entity import EntityStore
from .store.substrate import DurableStore
from .usage import UsageCounters


@dataclass
class OfflineRuntime:
    """Every component of one local data directory."""

    config: LexLedgerConfig
    clock: Clock
    substrate: DurableStore
    usage: UsageCounters
    connectivity: ConnectivityMonitor
    queue: SyncQueue
    engine: SyncEngine
    store: EntityStore
    audit: AuditLog
    consolidator: MerkleConsolidator
    compactor: AuditCompactor
    backups: AutoBackup

    @classmethod
    def open(
        cls,
        config: LexLedgerConfig | None = None,
        backend: BackendClient | None = None,
        current_user_id: Callable[[], str | None] | None = None,
        request_context: Callable[[], dict] | None = None,
        online: bool = True,
        probe: Callable[[], bool] | None = None,
        timestamper: TimestampAuthority | None = None,
        clock: Clock | None = None,
    ) -> "OfflineRuntime":
        """Open (or create) a data directory and wire its components.

        Backend, probe and timestamp authority default to the HTTP clients
        described by the config when their URLs are set.
        """
        config = config or LexLedgerConfig.from_env()
        errors = config.validate()
        if errors:
            raise ContractError(f"Invalid configuration: {'; '.join(errors)}")

        clock = clock or Clock()
        tenant = config.tenant_id

        if backend is None and config.backend_url:
            backend = HttpBackendClient(
                config.backend_url,
                api_key=config.backend_api_key or None,
                timeout=config.backend_timeout,
            )
        if probe is None and config.backend_url:
            host = urlparse(config.backend_url).hostname
            if host:
                probe = tcp_probe(host, config.probe_port)
        if timestamper is None and config.timestamp_url:
            timestamper = HttpTimestampAuthority(config.timestamp_url, timeout=config.backend_timeout)

        substrate = DurableStore(config.data_dir, max_bytes=config.max_bytes)
        usage = UsageCounters(substrate, clock, config.daily_limits)
        connectivity = ConnectivityMonitor(online=online, probe=probe, clock=clock, tenant_id=tenant)

        queue = SyncQueue(
            substrate,
            clock,
            max_attempts=config.sync_max_attempts,
            usage=usage,
            tenant_id=tenant,
        )
        engine = SyncEngine(
            queue,
            backend,
            connectivity,
            clock,
            interval_seconds=config.sync_interval_seconds,
            cleanup_days=config.sync_cleanup_days,
            sync_on_write=config.sync_on_write,
            tenant_id=tenant,
        )
        store = EntityStore(substrate, clock, queue=queue, on_enqueue=engine.on_local_write)

        audit = AuditLog(
            substrate,
            clock,
            sanitizer=Sanitizer(config.sensitive_fields, config.mask_length),
            fallback=FallbackBuffer(Path(config.data_dir) / FALLBACK_FILENAME, config.fallback_capacity),
            current_user_id=current_user_id,
            request_context=request_context,
            tenant_id=tenant,
        )
        consolidator = MerkleConsolidator(
            audit,
            clock,
            batch_size=config.merkle_batch_size,
            interval_seconds=config.merkle_interval_seconds,
            timestamper=timestamper,
            usage=usage,
            tenant_id=tenant,
        )
        compactor = AuditCompactor(
            audit,
            consolidator,
            clock,
            min_events=config.consolidation_min_events,
            interval_seconds=config.consolidation_interval_seconds,
            detailed_retention_days=config.detailed_retention_days,
            consolidated_retention_days=config.consolidated_retention_days,
            tenant_id=tenant,
        )
        backups = AutoBackup(
            store,
            Path(config.data_dir) / BACKUP_DIRNAME,
            clock,
            interval_seconds=config.backup_interval_seconds,
            max_backups=config.max_auto_backups,
            tenant_id=tenant,
        )
        audit.add_hook(consolidator.maybe_consolidate)
        audit.add_hook(compactor.check_and_consolidate)

        return cls(
            config=config,
            clock=clock,
            substrate=substrate,
            usage=usage,
            connectivity=connectivity,
            queue=queue,
            engine=engine,
            store=store,
            audit=audit,
            consolidator=consolidator,
            compactor=compactor,
            backups=backups,
        )

    def tick(self) -> dict:
        """Run every interval trigger that is due.

        Returns:
            Dict with online, sync (engine result or None), merkle_tree
            (new tree id or None), consolidation (summary or None) and
            backup (new auto backup entry or None)
        """
        online = self.connectivity.probe()

        sync = None
        if self.engine.backend is not None:
            sync = self.engine.tick()

        tree = self.consolidator.maybe_consolidate()
        consolidation = self.compactor.check_and_consolidate()
        backup = self.backups.maybe_backup()

        return {
            "online": online,
            "sync": sync,
            "merkle_tree": tree["id"] if tree else None,
            "consolidation": consolidation,
            "backup": backup,
        }

    def status(self) -> dict:
        return {
            "sync": self.engine.status(),
            "connectivity": self.connectivity.status(),
            "audit": {
                "events": self.audit.count(),
                "unanchored": self.consolidator.pending_count(),
                "merkle_trees": len(self.consolidator.trees()),
            },
            "usage": self.usage.check_limits(),
        }
