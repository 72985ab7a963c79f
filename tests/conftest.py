"""Shared fixtures: temporary data directory, controllable clock, fake remotes.

FakeTime: settable time source for Clock
FakeBackend: scripted backend client recording every call
FakeTimestamper: timestamp authority that witnesses or fails on demand
"""
from datetime import datetime, timedelta, timezone

import pytest

from lexledger.audit.anchor import MerkleConsolidator
from lexledger.audit.events import AuditLog
from lexledger.audit.fallback import FallbackBuffer
from lexledger.audit.timestamp import TimestampAuthority, TimestampError
from lexledger.core.clock import Clock
from lexledger.offline.backend import BackendClient, RemoteError
from lexledger.offline.queue import SyncQueue
from lexledger.offline.reconnect import ConnectivityMonitor
from lexledger.offline.sync import SyncEngine
from lexledger.store.entity import EntityStore
from lexledger.store.substrate import DurableStore

START = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


class FakeTime:
    """Time source that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)

    def set(self, value: datetime) -> None:
        self.current = value


class FakeBackend(BackendClient):
    """In-memory backend with scripted failures.

    Attributes:
        records: (collection, id) -> last upserted record
        calls: (operation, collection, record_id) in call order
        down: When True every call raises RemoteError
        failures: record_id -> number of calls still to fail
        reject: record ids for which the backend returns False
    """

    def __init__(self):
        self.records = {}
        self.calls = []
        self.down = False
        self.failures = {}
        self.reject = set()

    def _check(self, record_id: str) -> bool:
        if self.down:
            raise RemoteError("backend down")
        if self.failures.get(record_id, 0) > 0:
            self.failures[record_id] -= 1
            raise RemoteError(f"transient failure for {record_id}", status_code=503)
        return record_id not in self.reject

    def upsert(self, collection: str, record: dict) -> bool:
        self.calls.append(("upsert", collection, record["id"]))
        if not self._check(record["id"]):
            return False
        self.records[(collection, record["id"])] = dict(record)
        return True

    def delete(self, collection: str, record_id: str) -> bool:
        self.calls.append(("delete", collection, record_id))
        if not self._check(record_id):
            return False
        self.records.pop((collection, record_id), None)
        return True


class FakeTimestamper(TimestampAuthority):
    """Witnesses every root unless failing is set."""

    def __init__(self, failing: bool = False):
        self.failing = failing
        self.stamped = []

    def stamp(self, root_hash: str) -> dict:
        if self.failing:
            raise TimestampError("authority unreachable")
        self.stamped.append(root_hash)
        return {
            "source": "fake-tsa",
            "timestamp": "2026-01-05T12:00:00.000000Z",
            "hash": root_hash,
            "signature": "sig-" + root_hash[:8],
        }


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def clock(fake_time) -> Clock:
    return Clock(fake_time)


@pytest.fixture
def substrate(tmp_path) -> DurableStore:
    return DurableStore(tmp_path / "data")


@pytest.fixture
def queue(substrate, clock) -> SyncQueue:
    return SyncQueue(substrate, clock)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def monitor(clock) -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True, clock=clock)


@pytest.fixture
def engine(queue, backend, monitor, clock) -> SyncEngine:
    return SyncEngine(queue, backend, monitor, clock, sync_on_write=False)


@pytest.fixture
def store(substrate, clock, queue) -> EntityStore:
    return EntityStore(substrate, clock, queue=queue)


@pytest.fixture
def audit_log(substrate, clock, tmp_path) -> AuditLog:
    return AuditLog(
        substrate,
        clock,
        fallback=FallbackBuffer(tmp_path / "audit-fallback.jsonl"),
        current_user_id=lambda: "user-1",
        request_context=lambda: {"user_ip": "10.0.0.7", "user_agent": "pytest"},
    )


@pytest.fixture
def consolidator(audit_log, clock) -> MerkleConsolidator:
    return MerkleConsolidator(audit_log, clock)


@pytest.fixture
def timestamper() -> FakeTimestamper:
    return FakeTimestamper()
