"""Offline-first sync: queue, engine, connectivity and conflict policy.

Local writes never wait for the network. Each mutation is queued as it
happens; the engine drains the queue whenever connectivity allows.

Usage:
    from lexledger.offline import SyncQueue, SyncEngine, ConnectivityMonitor

    queue = SyncQueue(substrate)
    monitor = ConnectivityMonitor(online=False)
    engine = SyncEngine(queue, backend, connectivity=monitor)

    # Later, when the runtime reports the network is back
    monitor.set_online(True)   # triggers engine.trigger("reconnect")
"""
from lexledger.offline.backend import BackendClient, HttpBackendClient, RemoteError
from lexledger.offline.conflict import LOCAL_WINS, REMOTE_WINS, resolve_conflict
from lexledger.offline.queue import QUEUE_COLLECTION, SyncQueue
from lexledger.offline.reconnect import ConnectivityMonitor, is_connected, tcp_probe
from lexledger.offline.sync import SyncEngine

__all__ = [
    # Backend
    "BackendClient",
    "HttpBackendClient",
    "RemoteError",
    # Conflicts
    "LOCAL_WINS",
    "REMOTE_WINS",
    "resolve_conflict",
    # Queue
    "QUEUE_COLLECTION",
    "SyncQueue",
    # Connectivity
    "ConnectivityMonitor",
    "is_connected",
    "tcp_probe",
    # Engine
    "SyncEngine",
]
