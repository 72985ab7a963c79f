"""Connectivity monitoring.

Holds the current online/offline signal and publishes transitions to
subscribers. The sync engine subscribes so that regaining connectivity
triggers a drain; while offline its triggers are deferred. The only state
kept here is the boolean signal and when it last changed.
"""
import socket
from typing import Callable

from ..core.clock import Clock
from ..core.constants import DEFAULT_PROBE_HOST, DEFAULT_PROBE_PORT, PROBE_TIMEOUT_SECONDS
from ..core.receipt import emit_receipt


def is_connected(
    host: str = DEFAULT_PROBE_HOST,
    port: int = DEFAULT_PROBE_PORT,
    timeout: float = PROBE_TIMEOUT_SECONDS,
) -> bool:
    """True when a TCP handshake with host:port completes within timeout.

    Name resolution failures, refusals and timeouts all read as offline.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def tcp_probe(
    host: str = DEFAULT_PROBE_HOST,
    port: int = DEFAULT_PROBE_PORT,
    timeout: float = PROBE_TIMEOUT_SECONDS,
) -> Callable[[], bool]:
    """Build a probe callable for ConnectivityMonitor."""
    return lambda: is_connected(host, port, timeout)


class ConnectivityMonitor:
    """Current online/offline signal with transition subscriptions.

    Args:
        online: Initial signal
        probe: Optional callable returning the live signal (see tcp_probe)
        clock: Clock used to stamp transitions
    """

    def __init__(
        self,
        online: bool = True,
        probe: Callable[[], bool] | None = None,
        clock: Clock | None = None,
        tenant_id: str = "default",
    ):
        self._online = online
        self._probe = probe
        self.clock = clock or Clock()
        self.tenant_id = tenant_id
        self.changed_at: str | None = None
        self._subscribers: list[Callable[[bool], None]] = []

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a transition callback; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> bool:
        """Record the current signal, notifying subscribers on a transition.

        Returns:
            True if the signal changed
        """
        online = bool(online)
        if online == self._online:
            return False

        self._online = online
        self.changed_at = self.clock.now_iso()

        emit_receipt("connectivity_change", {
            "tenant_id": self.tenant_id,
            "status": "online" if online else "offline",
            "changed_at": self.changed_at,
        })

        for callback in list(self._subscribers):
            callback(online)
        return True

    def probe(self) -> bool:
        """Refresh the signal from the probe, if one is configured."""
        if self._probe is None:
            return self._online
        online = bool(self._probe())
        self.set_online(online)
        return online

    def status(self) -> dict:
        return {
            "online": self._online,
            "show_offline_banner": not self._online,
            "changed_at": self.changed_at,
        }
