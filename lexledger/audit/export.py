"""Audit export and statistics."""
import csv
import io
import json
from collections import Counter

from ..core.constants import EXPORT_LIMIT
from ..core.errors import ContractError
from .events import AuditLog

EXPORT_FORMATS = ("json", "csv")

CSV_COLUMNS = [
    "id",
    "timestamp",
    "event_type",
    "entity",
    "entity_id",
    "user_id",
    "user_ip",
    "user_agent",
    "hash",
    "merkle_tree_id",
    "data",
]


def _filename_stamp(timestamp: str) -> str:
    return timestamp[:19].replace(":", "-")


def export_audit_logs(audit_log: AuditLog, filters: dict | None = None, fmt: str = "json") -> dict:
    """Export matching events (oldest first) as JSON or CSV text.

    Returns:
        Dict with format, filename, count and content
    """
    if fmt not in EXPORT_FORMATS:
        raise ContractError(f"Unsupported export format: {fmt}")

    found = audit_log.search_audit_events(filters, {
        "limit": EXPORT_LIMIT,
        "sort_direction": "asc",
    })
    events = found["events"]
    stamp = _filename_stamp(audit_log.clock.now_iso())

    if fmt == "json":
        content = json.dumps(events, indent=2, sort_keys=True, ensure_ascii=False)
    else:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for event in events:
            row = {column: event.get(column) for column in CSV_COLUMNS}
            row["data"] = json.dumps(event.get("data") or {}, sort_keys=True, ensure_ascii=False)
            writer.writerow(row)
        content = buffer.getvalue()

    return {
        "format": fmt,
        "filename": f"audit_logs_{stamp}.{fmt}",
        "count": len(events),
        "total": found["total"],
        "content": content,
    }


def get_audit_stats(audit_log: AuditLog, filters: dict | None = None) -> dict:
    """Counts by type, entity, user and day, plus integrity coverage."""
    found = audit_log.search_audit_events(filters, {"limit": EXPORT_LIMIT})
    events = found["events"]

    by_type = Counter(e["event_type"] for e in events)
    by_entity = Counter(e["entity"] for e in events)
    by_user = Counter(e["user_id"] for e in events)
    by_day = Counter(e["timestamp"][:10] for e in events)

    anchored = sum(1 for e in events if e.get("merkle_tree_id"))

    return {
        "total_events": found["total"],
        "by_event_type": dict(by_type),
        "by_entity": dict(by_entity),
        "by_user": dict(by_user),
        "by_day": dict(sorted(by_day.items())),
        "integrity": {
            "anchored_events": anchored,
            "unanchored_events": len(events) - anchored,
            "merkle_trees": audit_log.substrate.count("audit_merkle_trees"),
        },
    }
