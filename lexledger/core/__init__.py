"""Core primitives: hashing, receipts, clock, errors, constants."""
from .clock import Clock, parse_iso, to_iso, utcnow
from .errors import (
    ConstraintError,
    ContractError,
    InvalidIndexError,
    LexLedgerError,
    StorageError,
)
from .receipt import StopRule, canonical_json, dual_hash, emit_receipt

__all__ = [
    "Clock",
    "parse_iso",
    "to_iso",
    "utcnow",
    "ConstraintError",
    "ContractError",
    "InvalidIndexError",
    "LexLedgerError",
    "StorageError",
    "StopRule",
    "canonical_json",
    "dual_hash",
    "emit_receipt",
]
