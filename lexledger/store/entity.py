"""Local entity mirror with secondary indexes.

Records are upserted by id into named collections on the durable
substrate. Secondary indexes are rebuilt from the substrate on first
access and kept in step with every save and delete.

Writes made in local_and_queue mode (the default) append a sync queue
entry in the same call, online or offline. The on_enqueue hook lets the
runtime push the write immediately when connectivity is up.
"""
import copy
import uuid
from typing import Callable, Iterable

from ..core.clock import Clock
from ..core.constants import (
    DURABILITY_MODES,
    MODE_LOCAL_AND_QUEUE,
    MODE_LOCAL_ONLY,
    OP_DELETE,
    OP_INSERT,
    OP_UPDATE,
)
from ..core.errors import ConstraintError, ContractError, InvalidIndexError, StorageError
from ..core.receipt import canonical_json, emit_receipt
from ..offline.conflict import LOCAL_WINS, resolve_conflict
from .schema import DEFAULT_SCHEMA, RESERVED_COLLECTIONS, IndexSpec
from .substrate import DurableStore


def _index_key(value):
    """Hashable index key for a field value; None means not indexed."""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return canonical_json(value)
    return value


class EntityStore:
    """Schema-indexed entity collections.

    Attributes:
        substrate: DurableStore holding one log per collection
        clock: Monotonic clock stamping updated_at
        queue: Optional SyncQueue receiving local mutations
        on_enqueue: Optional callback invoked with each new queue entry
    """

    def __init__(
        self,
        substrate: DurableStore,
        clock: Clock | None = None,
        schema: dict[str, Iterable[IndexSpec]] | None = None,
        queue=None,
        on_enqueue: Callable[[dict], None] | None = None,
    ):
        self.substrate = substrate
        self.clock = clock or Clock()
        self.queue = queue
        self.on_enqueue = on_enqueue
        self._schema: dict[str, dict[str, IndexSpec]] = {}
        self._indexes: dict[str, dict[str, dict]] = {}
        for name, indexes in (schema if schema is not None else DEFAULT_SCHEMA).items():
            self.register_collection(name, indexes)

    # === Schema ===

    def register_collection(self, name: str, indexes: Iterable[IndexSpec | str] = ()) -> None:
        """Declare a collection and its secondary indexes."""
        if name in RESERVED_COLLECTIONS:
            raise ContractError(f"Collection name is reserved: {name}")
        self.substrate.path_for(name)

        specs = {}
        for spec in indexes:
            if isinstance(spec, str):
                spec = IndexSpec(spec, spec)
            specs[spec.name] = spec
        specs.setdefault("updated_at", IndexSpec("updated_at", "updated_at"))

        self._schema[name] = specs
        self._indexes.pop(name, None)

    def collections(self) -> list[str]:
        return sorted(self._schema)

    def indexes(self, collection: str) -> list[IndexSpec]:
        return list(self._specs(collection).values())

    def _specs(self, collection: str) -> dict[str, IndexSpec]:
        if collection not in self._schema:
            raise ContractError(f"Unknown collection: {collection}")
        return self._schema[collection]

    # === Index maintenance ===

    def _index_for(self, collection: str) -> dict[str, dict]:
        if collection in self._indexes:
            return self._indexes[collection]

        specs = self._specs(collection)
        built: dict[str, dict] = {name: {} for name in specs}
        for record_id, record in self.substrate.items(collection):
            for name, spec in specs.items():
                key = _index_key(record.get(spec.field))
                if key is not None:
                    built[name].setdefault(key, set()).add(record_id)

        self._indexes[collection] = built
        return built

    def _check_unique(self, collection: str, record: dict) -> None:
        index = self._index_for(collection)
        for name, spec in self._specs(collection).items():
            if not spec.unique:
                continue
            key = _index_key(record.get(spec.field))
            if key is None:
                continue
            owners = index[name].get(key, set()) - {record["id"]}
            if owners:
                raise ConstraintError(
                    f"Unique index {collection}.{name} already holds {key!r}"
                )

    def _reindex(self, collection: str, old: dict | None, new: dict | None) -> None:
        index = self._index_for(collection)
        for name, spec in self._specs(collection).items():
            if old is not None:
                key = _index_key(old.get(spec.field))
                if key is not None:
                    ids = index[name].get(key)
                    if ids is not None:
                        ids.discard(old["id"])
                        if not ids:
                            del index[name][key]
            if new is not None:
                key = _index_key(new.get(spec.field))
                if key is not None:
                    index[name].setdefault(key, set()).add(new["id"])

    # === Queue coupling ===

    def _check_mode(self, mode: str | None) -> str:
        mode = mode or MODE_LOCAL_AND_QUEUE
        if mode not in DURABILITY_MODES:
            raise ContractError(f"Unknown durability mode: {mode}")
        return mode

    def _enqueue(
        self,
        mode: str,
        collection: str,
        operation: str,
        payload: dict,
        previous: dict | None,
        written: dict | None,
    ) -> None:
        """Queue a local write, undoing it when the entry cannot be persisted.

        A local change without its queue entry would never reach the server,
        so the write and its entry succeed or fail together.
        """
        if mode == MODE_LOCAL_ONLY or self.queue is None:
            return
        try:
            entry = self.queue.enqueue(collection, operation, payload)
        except StorageError:
            record_id = payload["id"]
            self.substrate.restore(collection, record_id, previous)
            self._reindex(collection, written, previous)
            raise
        if self.on_enqueue is not None:
            self.on_enqueue(entry)

    # === Operations ===

    def save(self, collection: str, record: dict, mode: str | None = None) -> dict:
        """Upsert a record by id and stamp updated_at.

        Args:
            collection: Target collection name
            record: Record fields; an id is generated when absent
            mode: "local_and_queue" (default) or "local_only"

        Returns:
            Stored copy of the record

        Raises:
            StorageError: Substrate unavailable or quota exceeded
            ConstraintError: A unique index would be violated
        """
        self._specs(collection)
        mode = self._check_mode(mode)
        if not isinstance(record, dict):
            raise ContractError("Record must be a dict")

        record_id = record.get("id")
        if record_id is None or record_id == "":
            record_id = uuid.uuid4().hex
        elif not isinstance(record_id, str):
            raise ContractError(f"Record id must be a string, got {type(record_id).__name__}")

        existing = self.substrate.get(collection, record_id)
        stored = {**copy.deepcopy(record), "id": record_id, "updated_at": self.clock.now_iso()}

        self._check_unique(collection, stored)
        self.substrate.put(collection, record_id, stored)
        self._reindex(collection, existing, stored)

        operation = OP_UPDATE if existing is not None else OP_INSERT
        self._enqueue(mode, collection, operation, stored, existing, stored)

        return copy.deepcopy(stored)

    def get(self, collection: str, record_id: str) -> dict | None:
        self._specs(collection)
        return self.substrate.get(collection, record_id)

    def get_all(self, collection: str, limit: int | None = None) -> list[dict]:
        """All records in id order, or the `limit` most recently updated.

        With a limit, records come newest first via the updated_at index.
        """
        self._specs(collection)
        if not limit:
            return self.substrate.values(collection)
        if limit < 0:
            raise ContractError("limit must be positive")

        by_updated = self._index_for(collection)["updated_at"]
        records = []
        for stamp in sorted(by_updated, reverse=True):
            for record_id in sorted(by_updated[stamp]):
                records.append(self.substrate.get(collection, record_id))
                if len(records) >= limit:
                    return records
        return records

    def delete(self, collection: str, record_id: str, mode: str | None = None) -> None:
        """Remove a record and its index entries, queueing a remote delete."""
        self._specs(collection)
        mode = self._check_mode(mode)

        existing = self.substrate.get(collection, record_id)
        if existing is not None:
            self.substrate.delete(collection, record_id)
            self._reindex(collection, existing, None)

        self._enqueue(mode, collection, OP_DELETE, {"id": record_id}, existing, None)

    def query_by_index(self, collection: str, index_name: str, value) -> list[dict]:
        """Records whose indexed field equals value exactly."""
        specs = self._specs(collection)
        if index_name not in specs:
            raise InvalidIndexError(f"Collection {collection} has no index {index_name!r}")

        key = _index_key(value)
        if key is None:
            return []
        ids = self._index_for(collection)[index_name].get(key, set())
        return [self.substrate.get(collection, record_id) for record_id in sorted(ids)]

    def count(self, collection: str) -> int:
        self._specs(collection)
        return self.substrate.count(collection)

    def merge_remote(self, collection: str, remote: dict, tenant_id: str = "default") -> dict:
        """Apply a server copy of a record under last-write-wins.

        A local record with unsynced changes at least as recent as the server
        copy is kept; otherwise the server copy is mirrored locally (never
        re-queued) and superseded pending entries are dropped.

        Returns:
            The record now held locally
        """
        self._specs(collection)
        record_id = remote.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise ContractError("Remote record must carry a string id")

        local = self.substrate.get(collection, record_id)
        pending = self.queue.pending_for(collection, record_id) if self.queue is not None else []
        winner = resolve_conflict(local, remote, has_pending=bool(pending))

        if pending:
            emit_receipt("conflict_resolution", {
                "tenant_id": tenant_id,
                "collection": collection,
                "record_id": record_id,
                "winner": winner,
                "pending_entries": [e["id"] for e in pending],
                "local_updated_at": local.get("updated_at") if local else None,
                "remote_updated_at": remote.get("updated_at"),
            })

        if winner == LOCAL_WINS:
            return local

        if pending:
            self.queue.supersede([e["id"] for e in pending])

        # Keep the server's updated_at so later comparisons see the server stamp
        mirrored = copy.deepcopy(remote)
        if not mirrored.get("updated_at"):
            mirrored["updated_at"] = self.clock.now_iso()
        self._check_unique(collection, mirrored)
        self.substrate.put(collection, record_id, mirrored)
        self._reindex(collection, local, mirrored)
        return copy.deepcopy(mirrored)

    def load_records(self, collection: str, records: list[dict], clear_existing: bool = False) -> int:
        """Write records as they are, keeping their updated_at, without queueing.

        Restores use this: a backup is a copy of local state, not a set of
        new mutations for the server. Every record is checked for an id
        before anything is written.

        Returns:
            Number of records written
        """
        self._specs(collection)
        batch: dict[str, dict] = {}
        for record in records:
            if not isinstance(record, dict) or not isinstance(record.get("id"), str) or not record["id"]:
                raise ContractError(f"Record in {collection} has no string id")
            batch[record["id"]] = copy.deepcopy(record)

        if clear_existing:
            for record_id, _ in self.substrate.items(collection):
                self.substrate.delete(collection, record_id)
            self._indexes.pop(collection, None)

        for record_id, record in batch.items():
            if not record.get("updated_at"):
                record["updated_at"] = self.clock.now_iso()
            existing = self.substrate.get(collection, record_id)
            self._check_unique(collection, record)
            self.substrate.put(collection, record_id, record)
            self._reindex(collection, existing, record)
        return len(batch)
