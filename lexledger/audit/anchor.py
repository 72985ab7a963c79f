"""Merkle consolidation of audit events.

Unanchored events are batched oldest first, (timestamp, id) order, into
Merkle trees whose roots make later tampering detectable. A batch is built
when enough events wait, or when the interval since the last tree (or,
before the first tree, since the oldest waiting event) has elapsed.

Each tree record lists its event ids in leaf order, so verification can
rebuild the root from the events as they are stored now.
"""
import logging
import uuid
from datetime import timedelta

from ..core.clock import Clock, parse_iso
from ..core.constants import MERKLE_BATCH_SIZE, MERKLE_INTERVAL_SECONDS
from ..core.receipt import emit_receipt
from .events import TIMESTAMPS_COLLECTION, TREES_COLLECTION, AuditLog, event_hash
from .merkle import build_tree, get_proof_path, verify_inclusion
from .timestamp import TimestampAuthority, request_timestamp

logger = logging.getLogger(__name__)

META_LAST_TREE = "last_merkle_tree"
META_LAST_TIMESTAMP = "last_timestamp"


class MerkleConsolidator:
    """Builds, timestamps and verifies Merkle trees over audit events.

    Attributes:
        audit_log: AuditLog whose events are anchored
        batch_size: Maximum leaves per tree; also the count trigger
        interval: Time trigger since the last tree
        timestamper: Optional TimestampAuthority witnessing each root
        usage: Optional UsageCounters tracking timestamp requests
    """

    def __init__(
        self,
        audit_log: AuditLog,
        clock: Clock | None = None,
        batch_size: int = MERKLE_BATCH_SIZE,
        interval_seconds: float = MERKLE_INTERVAL_SECONDS,
        timestamper: TimestampAuthority | None = None,
        usage=None,
        tenant_id: str = "default",
    ):
        self.audit_log = audit_log
        self.substrate = audit_log.substrate
        self.clock = clock or audit_log.clock
        self.batch_size = batch_size
        self.interval = timedelta(seconds=interval_seconds)
        self.timestamper = timestamper
        self.usage = usage
        self.tenant_id = tenant_id

    # === Trigger ===

    def pending_count(self) -> int:
        return self.audit_log.unanchored_summary()[0]

    def should_consolidate(self) -> bool:
        count, oldest = self.audit_log.unanchored_summary()
        if count == 0:
            return False
        if count >= self.batch_size:
            return True

        last = self.audit_log.get_meta(META_LAST_TREE)
        reference = last["timestamp"] if last else oldest
        return self.clock.peek() - parse_iso(reference) >= self.interval

    def maybe_consolidate(self, event: dict | None = None) -> dict | None:
        """Post-record hook: build a tree when a trigger is due."""
        if not self.should_consolidate():
            return None
        return self.consolidate()

    # === Build ===

    def consolidate(self) -> dict | None:
        """Anchor the oldest batch of unanchored events in a new tree.

        Returns:
            The stored tree record, or None when nothing waits
        """
        batch = self.audit_log.unanchored(limit=self.batch_size)
        if not batch:
            return None

        built = build_tree([event_hash(e) for e in batch])
        now = self.clock.now_iso()
        tree = {
            "id": f"merkle_{uuid.uuid4().hex}",
            "timestamp": now,
            "event_ids": [e["id"] for e in batch],
            "events_count": len(batch),
            "root_hash": built["root"],
            "height": built["height"],
            "first_event_timestamp": batch[0]["timestamp"],
            "last_event_timestamp": batch[-1]["timestamp"],
        }

        self.substrate.put(TREES_COLLECTION, tree["id"], tree)
        self.audit_log.attach_tree(tree["event_ids"], tree["id"])
        self.audit_log.set_meta(META_LAST_TREE, {
            "timestamp": now,
            "merkle_tree_id": tree["id"],
            "events_count": tree["events_count"],
        })

        proof = self._timestamp(tree) if self.timestamper is not None else None

        emit_receipt("merkle_anchor", {
            "tenant_id": self.tenant_id,
            "merkle_tree_id": tree["id"],
            "root_hash": tree["root_hash"],
            "height": tree["height"],
            "events_count": tree["events_count"],
            "hash_algos": ["SHA256", "BLAKE3"],
            "timestamp_source": proof["source"] if proof else None,
        })

        return tree

    def _timestamp(self, tree: dict) -> dict:
        if self.usage is not None:
            self.usage.track("timestamp_requests")

        proof = request_timestamp(self.timestamper, tree["root_hash"], self.clock)
        record = {
            "id": f"timestamp_{uuid.uuid4().hex}",
            "merkle_tree_id": tree["id"],
            "root_hash": tree["root_hash"],
            **{k: v for k, v in proof.items() if k != "hash"},
        }
        self.substrate.put(TIMESTAMPS_COLLECTION, record["id"], record)
        self.audit_log.set_meta(META_LAST_TIMESTAMP, {
            "timestamp": record["timestamp"],
            "merkle_tree_id": tree["id"],
            "source": record["source"],
            "authoritative": record["authoritative"],
        })

        emit_receipt("timestamp_proof", {
            "tenant_id": self.tenant_id,
            "merkle_tree_id": tree["id"],
            "root_hash": tree["root_hash"],
            "source": record["source"],
            "authoritative": record["authoritative"],
        })
        return record

    # === Reads ===

    def get_tree(self, tree_id: str) -> dict | None:
        return self.substrate.get(TREES_COLLECTION, tree_id)

    def trees(self) -> list[dict]:
        trees = self.substrate.values(TREES_COLLECTION)
        trees.sort(key=lambda t: (t["timestamp"], t["id"]))
        return trees

    def timestamp_for(self, tree_id: str) -> dict | None:
        for proof in self.substrate.values(TIMESTAMPS_COLLECTION):
            if proof["merkle_tree_id"] == tree_id:
                return proof
        return None

    def mark_pruned(self, tree_ids) -> int:
        """Record that detailed events of these trees were deleted."""
        marked = 0
        now = self.clock.now_iso()
        for tree_id in tree_ids:
            tree = self.get_tree(tree_id)
            if tree is None or tree.get("events_pruned_at"):
                continue
            tree["events_pruned_at"] = now
            self.substrate.put(TREES_COLLECTION, tree_id, tree)
            marked += 1
        return marked

    # === Verification ===

    def verify_merkle_tree_integrity(self, tree_id: str) -> dict:
        """Rebuild a tree from its current events and compare.

        Never raises for integrity failures; each check is reported.

        Returns:
            Dict with tree_found, events_count, events_found,
            root_hash_valid, timestamp_valid, timestamp_authoritative,
            events_pruned and overall_valid
        """
        tree = self.get_tree(tree_id)
        if tree is None:
            result = {
                "merkle_tree_id": tree_id,
                "tree_found": False,
                "events_count": 0,
                "events_found": 0,
                "root_hash_valid": False,
                "timestamp_valid": None,
                "timestamp_authoritative": False,
                "events_pruned": False,
                "overall_valid": False,
            }
            emit_receipt("merkle_verify", {"tenant_id": self.tenant_id, **result})
            return result

        events = [self.audit_log.get(event_id) for event_id in tree["event_ids"]]
        found = [e for e in events if e is not None]

        root_hash_valid = False
        if found:
            rebuilt = build_tree([event_hash(e) for e in found])["root"]
            root_hash_valid = rebuilt == tree["root_hash"]

        proof = self.timestamp_for(tree_id)
        timestamp_valid = None
        timestamp_authoritative = False
        if proof is not None:
            timestamp_valid = proof["root_hash"] == tree["root_hash"]
            timestamp_authoritative = bool(proof.get("authoritative"))

        result = {
            "merkle_tree_id": tree_id,
            "tree_found": True,
            "events_count": tree["events_count"],
            "events_found": len(found),
            "root_hash_valid": root_hash_valid,
            "timestamp_valid": timestamp_valid,
            "timestamp_authoritative": timestamp_authoritative,
            "events_pruned": bool(tree.get("events_pruned_at")),
            "overall_valid": (
                len(found) == tree["events_count"]
                and root_hash_valid
                and timestamp_valid is not False
            ),
        }

        if not result["overall_valid"] and not result["events_pruned"]:
            logger.warning("Merkle tree %s failed verification", tree_id)
            emit_receipt("anomaly_receipt", {
                "tenant_id": self.tenant_id,
                "anomaly_type": "merkle_mismatch",
                "merkle_tree_id": tree_id,
                "stage": "verify",
            })

        emit_receipt("merkle_verify", {"tenant_id": self.tenant_id, **result})
        return result

    def prove_inclusion(self, event_id: str) -> dict:
        """Sibling path from an event's leaf to its tree root.

        Returns:
            Dict with event_id, merkle_tree_id, leaf_hash, root_hash,
            proof_path and verified
        """
        result = {
            "event_id": event_id,
            "merkle_tree_id": None,
            "leaf_hash": None,
            "root_hash": None,
            "proof_path": [],
            "verified": False,
        }

        event = self.audit_log.get(event_id)
        if event is None or not event.get("merkle_tree_id"):
            return result
        tree = self.get_tree(event["merkle_tree_id"])
        if tree is None or event_id not in tree["event_ids"]:
            return result

        leaves = []
        for member_id in tree["event_ids"]:
            member = self.audit_log.get(member_id)
            if member is None:
                return {**result, "merkle_tree_id": tree["id"], "root_hash": tree["root_hash"]}
            leaves.append(event_hash(member))

        built = build_tree(leaves)
        index = tree["event_ids"].index(event_id)
        leaf = leaves[index]
        path = get_proof_path(index, built)

        return {
            "event_id": event_id,
            "merkle_tree_id": tree["id"],
            "leaf_hash": leaf,
            "root_hash": tree["root_hash"],
            "proof_path": path,
            "verified": verify_inclusion(leaf, path, tree["root_hash"]),
        }
