"""Exception taxonomy for the local store, sync and audit layers.

Storage failures propagate to the caller. Contract errors are programming
mistakes and are never retried. Integrity problems are not exceptions at
all: verification functions report them as structured results.
"""


class LexLedgerError(Exception):
    """Base class for all LexLedger errors."""
    pass


class StorageError(LexLedgerError):
    """Durable substrate unavailable, quota exceeded or file I/O failed."""
    pass


class ContractError(LexLedgerError):
    """Caller violated an API contract (unknown collection, bad filters...)."""
    pass


class InvalidIndexError(ContractError):
    """Lookup on an index the collection does not declare."""
    pass


class ConstraintError(ContractError):
    """Write would break a unique index or change an immutable id."""
    pass
