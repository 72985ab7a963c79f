"""Sync engine driving the queue against the remote backend.

State machine:
    idle -> syncing -> {complete | partial | error} -> idle

Triggers are connectivity regained ("reconnect"), the wall-clock interval
("interval", via tick()), an explicit call ("manual") and local writes made
while online ("write"). While offline nothing is drained: the trigger is
deferred, not failed. A drain that raises puts the engine in "error",
which is logged and absorbed; the next trigger simply tries again.
"""
import logging
from collections import deque
from datetime import timedelta

from ..core.clock import Clock
from ..core.constants import (
    ENGINE_BUSY,
    ENGINE_COMPLETE,
    ENGINE_DEFERRED,
    ENGINE_ERROR,
    ENGINE_IDLE,
    ENGINE_PARTIAL,
    ENGINE_SYNCING,
    SYNC_CLEANUP_DAYS,
    SYNC_INTERVAL_SECONDS,
)
from ..core.errors import ContractError
from ..core.receipt import emit_receipt

logger = logging.getLogger(__name__)


class SyncEngine:
    """Connectivity-aware driver for SyncQueue.drain().

    Attributes:
        queue: SyncQueue to drain
        backend: Backend client passed to drain()
        connectivity: ConnectivityMonitor (None means always online)
        state: Current state; idle between runs
        last_status: Outcome of the last run (complete, partial, error)
        transitions: Recent state transitions, oldest first
    """

    def __init__(
        self,
        queue,
        backend=None,
        connectivity=None,
        clock: Clock | None = None,
        interval_seconds: float = SYNC_INTERVAL_SECONDS,
        cleanup_days: int = SYNC_CLEANUP_DAYS,
        sync_on_write: bool = True,
        tenant_id: str = "default",
    ):
        self.queue = queue
        self.backend = backend
        self.connectivity = connectivity
        self.clock = clock or Clock()
        self.interval = timedelta(seconds=interval_seconds)
        self.cleanup_days = cleanup_days
        self.sync_on_write = sync_on_write
        self.tenant_id = tenant_id

        self.state = ENGINE_IDLE
        self.last_status: str | None = None
        self.last_sync_time: str | None = None
        self.last_error: str | None = None
        self.last_attempt = None
        self.transitions: deque = deque([ENGINE_IDLE], maxlen=50)

        if connectivity is not None:
            connectivity.subscribe(self._on_connectivity)

    def _set_state(self, state: str) -> None:
        self.state = state
        self.transitions.append(state)

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.trigger("reconnect")

    def is_online(self) -> bool:
        return self.connectivity is None or self.connectivity.is_online()

    def trigger(self, reason: str = "manual") -> dict:
        """Run one sync cycle if online and not already syncing.

        Returns:
            Result with status (complete, partial, error, deferred, busy),
            reason, drain summary and remaining pending count
        """
        if not self.is_online():
            return {
                "status": ENGINE_DEFERRED,
                "reason": reason,
                "pending_count": self.queue.pending_count(),
            }
        if self.state == ENGINE_SYNCING:
            return {"status": ENGINE_BUSY, "reason": reason}
        if self.backend is None:
            raise ContractError("SyncEngine has no backend client configured")

        self.last_attempt = self.clock.peek()
        self._set_state(ENGINE_SYNCING)

        result = {"reason": reason, "summary": None, "pending_count": None}
        try:
            summary = self.queue.drain(self.backend)
            self.queue.cleanup(self.cleanup_days)
            pending = self.queue.pending_count()
        except Exception as e:
            logger.exception("Sync drain failed (%s trigger)", reason)
            self.last_error = str(e)
            outcome = ENGINE_ERROR
            result["error"] = str(e)
        else:
            self.last_error = None
            self.last_sync_time = self.clock.now_iso()
            outcome = ENGINE_COMPLETE if pending == 0 else ENGINE_PARTIAL
            result["summary"] = summary
            result["pending_count"] = pending

        self.last_status = outcome
        self._set_state(outcome)
        result["status"] = outcome

        emit_receipt("sync_state", {
            "tenant_id": self.tenant_id,
            "status": outcome,
            "reason": reason,
            "pending_count": result["pending_count"],
            "error": result.get("error"),
        })

        self._set_state(ENGINE_IDLE)
        return result

    def sync_now(self) -> dict:
        """Manual "sync now" affordance."""
        return self.trigger("manual")

    def on_local_write(self, entry: dict) -> dict | None:
        """Push a freshly queued local write when online."""
        if not self.sync_on_write or self.backend is None:
            return None
        if not self.is_online() or self.state == ENGINE_SYNCING:
            return None
        return self.trigger("write")

    def tick(self) -> dict | None:
        """Fire the interval trigger when it is due."""
        now = self.clock.peek()
        if self.last_attempt is not None and now - self.last_attempt < self.interval:
            return None
        return self.trigger("interval")

    def status(self) -> dict:
        counts = self.queue.counts()
        return {
            "state": self.state,
            "last_status": self.last_status,
            "last_sync_time": self.last_sync_time,
            "last_error": self.last_error,
            "online": self.is_online(),
            "show_offline_banner": not self.is_online(),
            "pending_count": counts.get("pending", 0),
            "failed_count": counts.get("failed", 0),
        }
