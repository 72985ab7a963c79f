"""Last-write-wins conflict policy between local and server copies.

A conflict only exists when the local copy still has unsynced queue
entries. Without them the local record is a plain mirror and the server
copy always wins.
"""
from ..core.clock import parse_iso

LOCAL_WINS = "local"
REMOTE_WINS = "remote"


def _stamp(record: dict):
    value = record.get("updated_at")
    if not value:
        return None
    try:
        return parse_iso(value)
    except ValueError:
        return None


def resolve_conflict(local: dict | None, remote: dict, has_pending: bool) -> str:
    """Pick the surviving copy of a record.

    Args:
        local: Local record or None
        remote: Server record
        has_pending: Whether the local record has unsynced queue entries

    Returns:
        LOCAL_WINS or REMOTE_WINS
    """
    if local is None or not has_pending:
        return REMOTE_WINS

    local_ts = _stamp(local)
    remote_ts = _stamp(remote)

    # Unsynced local edit with no comparable server stamp: keep the edit
    if remote_ts is None:
        return LOCAL_WINS
    if local_ts is None:
        return REMOTE_WINS

    return LOCAL_WINS if local_ts >= remote_ts else REMOTE_WINS
