"""Sync queue of local mutations awaiting remote application.

Entries live in the "sync_queue" collection of the durable substrate with
auto-increment ids, so id order is creation order. Draining walks pending
entries in that order, one remote call at a time.

Lifecycle:
- pending -> completed on confirmed remote application
- pending -> pending with attempts + 1 on any backend failure
- pending -> failed once attempts reaches the ceiling (terminal)
- completed entries are purged by cleanup() after a grace period
- failed entries only move on an operator retry_failed / discard_failed
"""
import copy
from datetime import timedelta

from ..core.clock import Clock, to_iso
from ..core.constants import (
    OPERATIONS,
    OP_DELETE,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    SYNC_CLEANUP_DAYS,
    SYNC_MAX_ATTEMPTS,
)
from ..core.errors import ContractError
from ..core.receipt import emit_receipt
from .backend import RemoteError

QUEUE_COLLECTION = "sync_queue"


class SyncQueue:
    """Append-only queue of pending mutations.

    Attributes:
        substrate: DurableStore holding the sync_queue collection
        clock: Monotonic clock for created_at / updated_at
        max_attempts: Retry ceiling before an entry turns failed
        usage: Optional UsageCounters tracking backend requests
    """

    def __init__(
        self,
        substrate,
        clock: Clock | None = None,
        max_attempts: int = SYNC_MAX_ATTEMPTS,
        usage=None,
        tenant_id: str = "default",
    ):
        self.substrate = substrate
        self.clock = clock or Clock()
        self.max_attempts = max_attempts
        self.usage = usage
        self.tenant_id = tenant_id
        self.last_drain_time: str | None = None

    # === Enqueue ===

    def enqueue(self, collection: str, operation: str, payload: dict) -> dict:
        """Append a pending entry for one logical local mutation.

        Args:
            collection: Target collection name
            operation: "insert", "update" or "delete"
            payload: Record snapshot ({"id": ...} for deletes)

        Returns:
            The stored queue entry
        """
        if operation not in OPERATIONS:
            raise ContractError(f"Unknown queue operation: {operation}")
        if not isinstance(payload, dict):
            raise ContractError("Queue payload must be a dict")

        entry_id = self.substrate.next_sequence(QUEUE_COLLECTION)
        now = self.clock.now_iso()
        entry = {
            "id": entry_id,
            "collection": collection,
            "record_id": payload.get("id"),
            "operation": operation,
            "payload": copy.deepcopy(payload),
            "status": STATUS_PENDING,
            "attempts": 0,
            "last_error": None,
            "created_at": now,
            "updated_at": now,
        }
        self.substrate.put(QUEUE_COLLECTION, entry_id, entry)

        emit_receipt("offline_enqueue", {
            "tenant_id": self.tenant_id,
            "entry_id": entry_id,
            "collection": collection,
            "operation": operation,
            "record_id": entry["record_id"],
        })

        return copy.deepcopy(entry)

    # === Reads ===

    def get(self, entry_id: int) -> dict | None:
        return self.substrate.get(QUEUE_COLLECTION, entry_id)

    def entries(self, status: str | None = None) -> list[dict]:
        """All entries in creation order, optionally filtered by status."""
        items = self.substrate.values(QUEUE_COLLECTION)
        if status is not None:
            items = [e for e in items if e["status"] == status]
        return items

    def pending(self) -> list[dict]:
        return self.entries(STATUS_PENDING)

    def pending_for(self, collection: str, record_id: str) -> list[dict]:
        return [
            e for e in self.pending()
            if e["collection"] == collection and e["record_id"] == record_id
        ]

    def peek(self, n: int = 10) -> list[dict]:
        """Oldest N pending entries without touching them."""
        return self.pending()[:n]

    def counts(self) -> dict:
        result = {STATUS_PENDING: 0, STATUS_COMPLETED: 0, STATUS_FAILED: 0}
        for entry in self.entries():
            result[entry["status"]] = result.get(entry["status"], 0) + 1
        return result

    def pending_count(self) -> int:
        return self.counts()[STATUS_PENDING]

    def get_sync_status(self) -> dict:
        counts = self.counts()
        pending = self.pending()
        return {
            "pending_count": counts[STATUS_PENDING],
            "completed_count": counts[STATUS_COMPLETED],
            "failed_count": counts[STATUS_FAILED],
            "oldest_pending": pending[0]["created_at"] if pending else None,
            "last_drain_time": self.last_drain_time,
        }

    # === Drain ===

    def _touch(self, entry: dict, **changes) -> dict:
        entry.update(changes)
        entry["updated_at"] = self.clock.now_iso()
        self.substrate.put(QUEUE_COLLECTION, entry["id"], entry)
        return entry

    def _apply(self, backend, entry: dict) -> None:
        if entry["operation"] == OP_DELETE:
            ok = backend.delete(entry["collection"], entry["record_id"])
        else:
            ok = backend.upsert(entry["collection"], entry["payload"])
        if ok is False:
            raise RemoteError(f"Backend rejected entry {entry['id']}")

    def drain(self, backend) -> dict:
        """Apply every pending entry against the backend, oldest first.

        Once an entry for a collection+id fails in this pass, later entries
        for the same record wait for the next pass so they are never applied
        ahead of it.

        Args:
            backend: Object exposing upsert(collection, record) and
                delete(collection, record_id)

        Returns:
            Summary with processed, succeeded, failed, dead_lettered, deferred
        """
        summary = {
            "processed": 0,
            "succeeded": 0,
            "failed": 0,
            "dead_lettered": 0,
            "deferred": 0,
        }
        blocked: set[tuple] = set()

        for entry in self.pending():
            key = (entry["collection"], entry["record_id"])
            if key in blocked:
                summary["deferred"] += 1
                continue

            summary["processed"] += 1
            if self.usage is not None:
                self.usage.track("backend_requests")

            try:
                self._apply(backend, entry)
            except Exception as e:
                # Any backend failure counts against the entry
                attempts = entry["attempts"] + 1
                status = STATUS_FAILED if attempts >= self.max_attempts else STATUS_PENDING
                self._touch(entry, attempts=attempts, status=status, last_error=str(e))
                summary["failed"] += 1

                if status == STATUS_FAILED:
                    summary["dead_lettered"] += 1
                    emit_receipt("sync_entry_failed", {
                        "tenant_id": self.tenant_id,
                        "entry_id": entry["id"],
                        "collection": entry["collection"],
                        "record_id": entry["record_id"],
                        "attempts": attempts,
                        "error": str(e),
                    })
                else:
                    blocked.add(key)
                continue

            self._touch(entry, status=STATUS_COMPLETED, last_error=None)
            summary["succeeded"] += 1

        self.last_drain_time = self.clock.now_iso()
        emit_receipt("sync_drain", {
            "tenant_id": self.tenant_id,
            **summary,
        })
        return summary

    # === Garbage collection and operator actions ===

    def cleanup(self, older_than_days: int = SYNC_CLEANUP_DAYS) -> int:
        """Delete completed entries last touched before the cutoff.

        Pending and failed entries are never removed here.

        Returns:
            Number of entries removed
        """
        cutoff = to_iso(self.clock.peek() - timedelta(days=older_than_days))
        removed = 0
        for entry in self.entries(STATUS_COMPLETED):
            if entry["updated_at"] < cutoff:
                self.substrate.delete(QUEUE_COLLECTION, entry["id"])
                removed += 1

        if removed:
            self.substrate.compact(QUEUE_COLLECTION)
            emit_receipt("queue_cleanup", {
                "tenant_id": self.tenant_id,
                "removed": removed,
                "older_than_days": older_than_days,
            })
        return removed

    def _failed_targets(self, entry_id: int | None) -> list[dict]:
        if entry_id is None:
            return self.entries(STATUS_FAILED)
        entry = self.get(entry_id)
        if entry is None or entry["status"] != STATUS_FAILED:
            raise ContractError(f"Queue entry {entry_id} is not failed")
        return [entry]

    def retry_failed(self, entry_id: int | None = None) -> int:
        """Return failed entries to pending with a fresh attempt budget."""
        targets = self._failed_targets(entry_id)
        for entry in targets:
            self._touch(entry, status=STATUS_PENDING, attempts=0)

        if targets:
            emit_receipt("queue_retry", {
                "tenant_id": self.tenant_id,
                "entry_ids": [e["id"] for e in targets],
            })
        return len(targets)

    def discard_failed(self, entry_id: int | None = None) -> int:
        """Delete failed entries an operator has given up on."""
        targets = self._failed_targets(entry_id)
        for entry in targets:
            self.substrate.delete(QUEUE_COLLECTION, entry["id"])

        if targets:
            emit_receipt("queue_discard", {
                "tenant_id": self.tenant_id,
                "entry_ids": [e["id"] for e in targets],
            })
        return len(targets)

    def supersede(self, entry_ids: list[int]) -> int:
        """Drop pending entries overridden by a newer server copy."""
        removed = 0
        for entry_id in entry_ids:
            entry = self.get(entry_id)
            if entry is not None and entry["status"] == STATUS_PENDING:
                self.substrate.delete(QUEUE_COLLECTION, entry_id)
                removed += 1
        return removed
