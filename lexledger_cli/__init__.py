"""LexLedger CLI."""
from lexledger import __version__

__all__ = ["__version__"]
