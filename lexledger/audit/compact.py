"""Daily rollups and retention for audit events.

Detailed events are summarized per (day, entity, event_type). A watermark
(the newest timestamp already rolled up) is stored with the
last_consolidation metadata so each event is counted exactly once across
runs.

Retention only removes what is still provable: detailed events older than
the retention window are deleted only once they are both rolled up and
anchored in a Merkle tree. Their trees are marked events_pruned_at, since
those roots can no longer be rebuilt. Rollups expire after a much longer
window.
"""
import uuid
from collections import defaultdict
from datetime import timedelta

from ..core.clock import Clock, parse_iso, to_iso
from ..core.constants import (
    CONSOLIDATED_RETENTION_DAYS,
    CONSOLIDATION_INTERVAL_SECONDS,
    CONSOLIDATION_MIN_EVENTS,
    DETAILED_RETENTION_DAYS,
)
from ..core.receipt import emit_receipt
from .events import CONSOLIDATED_COLLECTION, AuditLog

META_LAST_CONSOLIDATION = "last_consolidation"
SAMPLE_SIZE = 5


class AuditCompactor:
    """Rolls up and prunes the detailed audit log.

    Attributes:
        audit_log: AuditLog being compacted
        consolidator: Optional MerkleConsolidator whose trees get marked
            when their events are pruned
    """

    def __init__(
        self,
        audit_log: AuditLog,
        consolidator=None,
        clock: Clock | None = None,
        min_events: int = CONSOLIDATION_MIN_EVENTS,
        interval_seconds: float = CONSOLIDATION_INTERVAL_SECONDS,
        detailed_retention_days: int = DETAILED_RETENTION_DAYS,
        consolidated_retention_days: int = CONSOLIDATED_RETENTION_DAYS,
        tenant_id: str = "default",
    ):
        self.audit_log = audit_log
        self.substrate = audit_log.substrate
        self.consolidator = consolidator
        self.clock = clock or audit_log.clock
        self.min_events = min_events
        self.interval = timedelta(seconds=interval_seconds)
        self.detailed_retention = timedelta(days=detailed_retention_days)
        self.consolidated_retention = timedelta(days=consolidated_retention_days)
        self.tenant_id = tenant_id

    def watermark(self) -> str | None:
        last = self.audit_log.get_meta(META_LAST_CONSOLIDATION)
        return last.get("through_timestamp") if last else None

    def is_due(self) -> bool:
        if self.audit_log.count() < self.min_events:
            return False
        last = self.audit_log.get_meta(META_LAST_CONSOLIDATION)
        if last is None:
            return True
        return self.clock.peek() - parse_iso(last["timestamp"]) >= self.interval

    def check_and_consolidate(self, event: dict | None = None) -> dict | None:
        """Post-record hook: roll up and prune when due."""
        if not self.is_due():
            return None
        return self.consolidate_audit_logs()

    def consolidate_audit_logs(self) -> dict:
        """Roll up events newer than the watermark, then apply retention.

        Returns:
            Summary with events_count, consolidated_count, through_timestamp
            and the retention result under "cleanup"
        """
        watermark = self.watermark()
        events = [
            e for e in self.audit_log.events()
            if watermark is None or e["timestamp"] > watermark
        ]

        groups: dict[tuple, list] = defaultdict(list)
        for event in events:
            key = (event["timestamp"][:10], event["entity"], event["event_type"])
            groups[key].append(event)

        now = self.clock.now_iso()
        for (day, entity, event_type), items in sorted(groups.items()):
            rollup_id = f"consolidated_{uuid.uuid4().hex}"
            self.substrate.put(CONSOLIDATED_COLLECTION, rollup_id, {
                "id": rollup_id,
                "date": day,
                "entity": entity,
                "event_type": event_type,
                "count": len(items),
                "unique_entities": len({e["entity_id"] for e in items if e["entity_id"]}),
                "first_event_timestamp": items[0]["timestamp"],
                "last_event_timestamp": items[-1]["timestamp"],
                "sample_event_ids": [e["id"] for e in items[:SAMPLE_SIZE]],
                "consolidated_at": now,
            })

        through = events[-1]["timestamp"] if events else watermark
        self.audit_log.set_meta(META_LAST_CONSOLIDATION, {
            "timestamp": now,
            "through_timestamp": through,
            "events_count": len(events),
            "consolidated_count": len(groups),
        })

        cleanup = self.cleanup_old_audit_logs()

        summary = {
            "events_count": len(events),
            "consolidated_count": len(groups),
            "through_timestamp": through,
            "cleanup": cleanup,
        }
        emit_receipt("audit_consolidation", {
            "tenant_id": self.tenant_id,
            **summary,
        })
        return summary

    def cleanup_old_audit_logs(self) -> dict:
        """Delete expired detailed events and rollups.

        Returns:
            Dict with events_removed, consolidated_removed, trees_marked
        """
        now = self.clock.peek()
        detailed_cutoff = to_iso(now - self.detailed_retention)
        rollup_cutoff = to_iso(now - self.consolidated_retention)
        watermark = self.watermark()

        expired = []
        trees = set()
        if watermark is not None:
            for event in self.audit_log.events():
                if event["timestamp"] >= detailed_cutoff:
                    break
                if event["timestamp"] > watermark or not event.get("merkle_tree_id"):
                    continue
                expired.append(event["id"])
                trees.add(event["merkle_tree_id"])

        events_removed = self.audit_log.delete_events(expired)
        trees_marked = self.consolidator.mark_pruned(sorted(trees)) if self.consolidator else 0

        consolidated_removed = 0
        for log in self.substrate.values(CONSOLIDATED_COLLECTION):
            if log["date"] < rollup_cutoff[:10]:
                self.substrate.delete(CONSOLIDATED_COLLECTION, log["id"])
                consolidated_removed += 1

        result = {
            "events_removed": events_removed,
            "consolidated_removed": consolidated_removed,
            "trees_marked": trees_marked,
        }
        if events_removed or consolidated_removed:
            emit_receipt("audit_retention", {
                "tenant_id": self.tenant_id,
                **result,
            })
        return result
