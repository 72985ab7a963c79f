"""Tamper-evident audit log: sanitized events, Merkle anchoring, rollups.

Usage:
    from lexledger.audit import AuditLog, MerkleConsolidator

    log = AuditLog(substrate, current_user_id=lambda: "u1")
    anchor = MerkleConsolidator(log)
    log.add_hook(anchor.maybe_consolidate)

    event = log.record("update", "cliente", "c1", {"nome": "Ana", "cpf": "12345678901"})
    log.verify_integrity(event)
"""
from lexledger.audit.anchor import MerkleConsolidator
from lexledger.audit.compact import AuditCompactor
from lexledger.audit.events import (
    ENTITIES,
    EVENT_TYPES,
    AuditLog,
    event_hash,
)
from lexledger.audit.export import export_audit_logs, get_audit_stats
from lexledger.audit.fallback import FallbackBuffer
from lexledger.audit.merkle import build_tree, get_proof_path, merkle_root, verify_inclusion
from lexledger.audit.sanitize import DEFAULT_SENSITIVE_FIELDS, Sanitizer, mask_value
from lexledger.audit.timestamp import (
    HttpTimestampAuthority,
    TimestampAuthority,
    TimestampError,
    request_timestamp,
)

__all__ = [
    # Events
    "AuditLog",
    "EVENT_TYPES",
    "ENTITIES",
    "event_hash",
    "FallbackBuffer",
    # Sanitization
    "DEFAULT_SENSITIVE_FIELDS",
    "Sanitizer",
    "mask_value",
    # Merkle
    "MerkleConsolidator",
    "build_tree",
    "get_proof_path",
    "merkle_root",
    "verify_inclusion",
    # Timestamping
    "HttpTimestampAuthority",
    "TimestampAuthority",
    "TimestampError",
    "request_timestamp",
    # Rollups and export
    "AuditCompactor",
    "export_audit_logs",
    "get_audit_stats",
]
