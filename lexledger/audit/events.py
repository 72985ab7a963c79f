"""Tamper-evident audit event log.

Every security-relevant action becomes one immutable event: the payload is
sanitized, the event is hashed over its canonical JSON and persisted in the
"audit_events" collection. The only field that changes afterwards is
merkle_tree_id, written once by the Merkle consolidator through
attach_tree(); it is excluded from the hash for that reason.

Post-record hooks (Merkle trigger, daily rollup) run after persistence.
Their failures are logged and never reach the caller.
"""
import copy
import logging
import uuid
from datetime import timedelta
from typing import Callable

from ..core.clock import Clock, parse_iso, to_iso
from ..core.constants import SEARCH_DEFAULT_LIMIT
from ..core.errors import ContractError, StorageError
from ..core.receipt import canonical_json, dual_hash, emit_receipt
from .fallback import FallbackBuffer
from .sanitize import Sanitizer

logger = logging.getLogger(__name__)

EVENTS_COLLECTION = "audit_events"
CONSOLIDATED_COLLECTION = "audit_consolidated"
TREES_COLLECTION = "audit_merkle_trees"
TIMESTAMPS_COLLECTION = "audit_timestamps"
META_COLLECTION = "audit_meta"

EVENT_TYPES = (
    "create",
    "update",
    "delete",
    "login",
    "logout",
    "export",
    "import",
    "share",
    "print",
    "admin",
)

ENTITIES = (
    "cliente",
    "processo",
    "documento",
    "atendimento",
    "pericia",
    "lead",
    "campanha",
    "usuario",
    "sistema",
)

HASH_EXCLUDED_FIELDS = frozenset({"hash", "merkle_tree_id"})

FILTER_KEYS = frozenset({
    "event_type",
    "entity",
    "entity_id",
    "user_id",
    "start_date",
    "end_date",
    "search_text",
})
OPTION_KEYS = frozenset({
    "limit",
    "offset",
    "sort_by",
    "sort_direction",
    "include_consolidated",
})
SORTABLE_FIELDS = frozenset({
    "timestamp",
    "event_type",
    "entity",
    "entity_id",
    "user_id",
    "id",
})


def event_hash(event: dict) -> str:
    """Digest of an event over every field except hash and merkle_tree_id.

    Used unchanged at creation, as the Merkle leaf and at verification.
    """
    body = {k: v for k, v in event.items() if k not in HASH_EXCLUDED_FIELDS}
    return dual_hash(canonical_json(body))


def _default_context() -> dict:
    return {"user_ip": "unknown", "user_agent": "unknown"}


def _parse_bound(value, name: str, end_of_day: bool = False) -> str:
    if not isinstance(value, str):
        raise ContractError(f"{name} must be an ISO date string")
    try:
        dt = parse_iso(value)
    except ValueError as e:
        raise ContractError(f"Invalid {name}: {value!r}") from e
    # A plain date as end bound covers the whole day
    if end_of_day and len(value) == 10:
        dt = dt + timedelta(days=1) - timedelta(microseconds=1)
    return to_iso(dt)


class AuditLog:
    """Append-only log of sanitized, hashed audit events.

    Attributes:
        substrate: DurableStore holding the audit collections
        clock: Monotonic clock stamping event timestamps
        sanitizer: Sanitizer applied to every payload
        fallback: Optional FallbackBuffer used when persistence fails
        current_user_id: Provider of the acting user id
        request_context: Provider of {"user_ip", "user_agent"}
        hooks: Callables run with each recorded event
    """

    def __init__(
        self,
        substrate,
        clock: Clock | None = None,
        sanitizer: Sanitizer | None = None,
        fallback: FallbackBuffer | None = None,
        current_user_id: Callable[[], str | None] | None = None,
        request_context: Callable[[], dict] | None = None,
        tenant_id: str = "default",
    ):
        self.substrate = substrate
        self.clock = clock or Clock()
        self.sanitizer = sanitizer or Sanitizer()
        self.fallback = fallback
        self.current_user_id = current_user_id or (lambda: "system")
        self.request_context = request_context or _default_context
        self.tenant_id = tenant_id
        self.hooks: list[Callable[[dict], object]] = []

    def add_hook(self, hook: Callable[[dict], object]) -> None:
        self.hooks.append(hook)

    # === Recording ===

    def record(self, event_type: str, entity: str, entity_id=None, data: dict | None = None) -> dict:
        """Record one audit event.

        Unknown event types or entities are logged as warnings but still
        recorded.

        Returns:
            The stored event

        Raises:
            StorageError: Event could not be persisted (a minimal record
                was written to the fallback buffer first)
        """
        if event_type not in EVENT_TYPES:
            logger.warning("Unknown audit event type: %s", event_type)
        if entity not in ENTITIES:
            logger.warning("Unknown audit entity: %s", entity)

        context = self.request_context() or {}
        event = {
            "id": f"audit_{uuid.uuid4().hex}",
            "timestamp": self.clock.now_iso(),
            "event_type": event_type,
            "entity": entity,
            "entity_id": None if entity_id is None else str(entity_id),
            "user_id": self.current_user_id(),
            "user_ip": context.get("user_ip", "unknown"),
            "user_agent": context.get("user_agent", "unknown"),
            "data": self.sanitizer.sanitize(data),
        }
        event["hash"] = event_hash(event)

        try:
            self.substrate.put(EVENTS_COLLECTION, event["id"], event)
        except StorageError as e:
            self._write_fallback(event, e)
            raise

        for hook in self.hooks:
            try:
                hook(event)
            except Exception:
                logger.exception("Audit post-record hook %r failed", hook)

        return copy.deepcopy(event)

    def _write_fallback(self, event: dict, error: Exception) -> None:
        written = False
        if self.fallback is not None:
            written = self.fallback.append({
                "timestamp": event["timestamp"],
                "event_type": event["event_type"],
                "entity": event["entity"],
                "entity_id": event["entity_id"],
                "error": str(error),
            })
        emit_receipt("audit_fallback", {
            "tenant_id": self.tenant_id,
            "event_type": event["event_type"],
            "entity": event["entity"],
            "buffered": written,
            "error": str(error),
        })

    def try_record(self, event_type: str, entity: str, entity_id=None, data: dict | None = None) -> dict | None:
        """record() for business actions: storage failures return None."""
        try:
            return self.record(event_type, entity, entity_id, data)
        except StorageError as e:
            logger.error("Audit event %s/%s not persisted: %s", event_type, entity, e)
            return None

    # === Reads ===

    def get(self, event_id: str) -> dict | None:
        return self.substrate.get(EVENTS_COLLECTION, event_id)

    def events(self) -> list[dict]:
        """All detailed events ordered by (timestamp, id)."""
        events = self.substrate.values(EVENTS_COLLECTION)
        events.sort(key=lambda e: (e["timestamp"], e["id"]))
        return events

    def count(self) -> int:
        return self.substrate.count(EVENTS_COLLECTION)

    def unanchored(self, limit: int | None = None) -> list[dict]:
        """Events not yet in a Merkle tree, oldest first."""
        raw = [e for e in self.substrate.scan(EVENTS_COLLECTION) if not e.get("merkle_tree_id")]
        raw.sort(key=lambda e: (e["timestamp"], e["id"]))
        if limit is not None:
            raw = raw[:limit]
        return copy.deepcopy(raw)

    def unanchored_summary(self) -> tuple[int, str | None]:
        """(count, oldest timestamp) of unanchored events, without copying."""
        count = 0
        oldest = None
        for event in self.substrate.scan(EVENTS_COLLECTION):
            if event.get("merkle_tree_id"):
                continue
            count += 1
            if oldest is None or event["timestamp"] < oldest:
                oldest = event["timestamp"]
        return count, oldest

    def consolidated_logs(self) -> list[dict]:
        logs = self.substrate.values(CONSOLIDATED_COLLECTION)
        logs.sort(key=lambda c: (c["date"], c["entity"], c["event_type"]))
        return logs

    # === Metadata ===

    def get_meta(self, key: str) -> dict | None:
        return self.substrate.get(META_COLLECTION, key)

    def set_meta(self, key: str, value: dict) -> None:
        self.substrate.put(META_COLLECTION, key, value)

    # === Mutations reserved for consolidation and retention ===

    def attach_tree(self, event_ids: list[str], tree_id: str) -> int:
        """Back-fill merkle_tree_id on events; each event is anchored once."""
        attached = 0
        for event_id in event_ids:
            event = self.get(event_id)
            if event is None:
                raise ContractError(f"Unknown audit event: {event_id}")
            current = event.get("merkle_tree_id")
            if current == tree_id:
                continue
            if current:
                raise ContractError(f"Event {event_id} already anchored in {current}")
            event["merkle_tree_id"] = tree_id
            self.substrate.put(EVENTS_COLLECTION, event_id, event)
            attached += 1
        return attached

    def delete_events(self, event_ids: list[str]) -> int:
        removed = 0
        for event_id in event_ids:
            if self.substrate.delete(EVENTS_COLLECTION, event_id):
                removed += 1
        if removed:
            self.substrate.compact(EVENTS_COLLECTION)
        return removed

    # === Verification ===

    def verify_integrity(self, event: dict) -> dict:
        """Recompute an event's hash and check its Merkle membership.

        Never raises for integrity failures.

        Returns:
            Dict with event_id, hash_valid, merkle_proof_valid,
            merkle_tree_id, checked_at and overall_valid
        """
        hash_valid = event_hash(event) == event.get("hash")

        tree_id = event.get("merkle_tree_id")
        merkle_proof_valid = False
        if tree_id:
            tree = self.substrate.get(TREES_COLLECTION, tree_id)
            merkle_proof_valid = tree is not None and event.get("id") in tree.get("event_ids", [])

        result = {
            "event_id": event.get("id"),
            "hash_valid": hash_valid,
            "merkle_proof_valid": merkle_proof_valid,
            "merkle_tree_id": tree_id,
            "checked_at": self.clock.now_iso(),
            "overall_valid": hash_valid and (merkle_proof_valid or not tree_id),
        }

        emit_receipt("audit_verify", {
            "tenant_id": self.tenant_id,
            **result,
        })
        return result

    # === Search ===

    def _check_search_args(self, filters: dict, options: dict) -> dict:
        unknown = set(filters) - FILTER_KEYS
        if unknown:
            raise ContractError(f"Unknown search filters: {sorted(unknown)}")
        unknown = set(options) - OPTION_KEYS
        if unknown:
            raise ContractError(f"Unknown search options: {sorted(unknown)}")

        opts = {
            "limit": options.get("limit", SEARCH_DEFAULT_LIMIT),
            "offset": options.get("offset", 0),
            "sort_by": options.get("sort_by", "timestamp"),
            "sort_direction": options.get("sort_direction", "desc"),
            "include_consolidated": bool(options.get("include_consolidated", False)),
        }
        for name in ("limit", "offset"):
            value = opts[name]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ContractError(f"{name} must be a non-negative integer")
        if opts["sort_direction"] not in ("asc", "desc"):
            raise ContractError(f"sort_direction must be 'asc' or 'desc', got {opts['sort_direction']!r}")
        if opts["sort_by"] not in SORTABLE_FIELDS:
            raise ContractError(f"Cannot sort by {opts['sort_by']!r}")
        return opts

    def search_audit_events(self, filters: dict | None = None, options: dict | None = None) -> dict:
        """Filter, sort and page detailed events.

        Args:
            filters: event_type, entity, entity_id, user_id, start_date,
                end_date, search_text
            options: limit (100), offset (0), sort_by ("timestamp"),
                sort_direction ("desc"), include_consolidated (False)

        Returns:
            Dict with events, consolidated_logs, total, total_consolidated,
            limit and offset

        Raises:
            ContractError: Unknown keys or malformed values
        """
        filters = dict(filters or {})
        opts = self._check_search_args(filters, options or {})

        start = _parse_bound(filters["start_date"], "start_date") if filters.get("start_date") else None
        end = _parse_bound(filters["end_date"], "end_date", end_of_day=True) if filters.get("end_date") else None
        text = filters.get("search_text")
        text = text.lower() if text else None

        matched = []
        for event in self.substrate.values(EVENTS_COLLECTION):
            if any(
                filters.get(field) is not None and event.get(field) != filters[field]
                for field in ("event_type", "entity", "entity_id", "user_id")
            ):
                continue
            if start and event["timestamp"] < start:
                continue
            if end and event["timestamp"] > end:
                continue
            if text and text not in canonical_json(event).lower():
                continue
            matched.append(event)

        sort_by = opts["sort_by"]
        matched.sort(
            key=lambda e: (str(e.get(sort_by) or ""), e["timestamp"], e["id"]),
            reverse=opts["sort_direction"] == "desc",
        )

        offset, limit = opts["offset"], opts["limit"]
        page = matched[offset:offset + limit]

        consolidated = []
        if opts["include_consolidated"]:
            start_day = start[:10] if start else None
            end_day = end[:10] if end else None
            for log in self.consolidated_logs():
                if filters.get("event_type") and log["event_type"] != filters["event_type"]:
                    continue
                if filters.get("entity") and log["entity"] != filters["entity"]:
                    continue
                if start_day and log["date"] < start_day:
                    continue
                if end_day and log["date"] > end_day:
                    continue
                consolidated.append(log)

        return {
            "events": page,
            "consolidated_logs": consolidated,
            "total": len(matched),
            "total_consolidated": len(consolidated),
            "limit": limit,
            "offset": offset,
        }
