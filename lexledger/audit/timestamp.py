"""External timestamping of Merkle roots.

An authority receives a root hash and returns a witnessed timestamp. When
the authority is unreachable or answers for a different hash, a local
timestamp is recorded instead with authoritative=False: it documents when
the tree was built but proves nothing to a third party.
"""
import logging

import requests

from ..core.clock import Clock
from ..core.constants import BACKEND_TIMEOUT_SECONDS
from ..core.errors import LexLedgerError

logger = logging.getLogger(__name__)

SOURCE_LOCAL = "local"
SOURCE_LOCAL_FALLBACK = "local_fallback"


class TimestampError(LexLedgerError):
    """Timestamp authority failed or returned an unusable answer."""
    pass


class TimestampAuthority:
    """Interface: stamp(root_hash) returns the authority's response dict."""

    def stamp(self, root_hash: str) -> dict:
        raise NotImplementedError


class HttpTimestampAuthority(TimestampAuthority):
    """JSON timestamp service.

    POSTs {"hash": root_hash} and expects a JSON body carrying at least
    "timestamp" and optionally "signature" and "hash".
    """

    def __init__(
        self,
        url: str,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def stamp(self, root_hash: str) -> dict:
        try:
            response = self.session.post(
                self.url,
                json={"hash": root_hash},
                timeout=self.timeout,
                headers={"User-Agent": "LexLedger/1.0"},
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TimestampError(f"Timestamp authority {self.url} failed: {e}") from e

        if not isinstance(body, dict) or "timestamp" not in body:
            raise TimestampError(f"Timestamp authority {self.url} returned no timestamp")
        return {"source": self.url, **body}


def local_timestamp(root_hash: str, clock: Clock, source: str = SOURCE_LOCAL, error: str | None = None) -> dict:
    proof = {
        "source": source,
        "authoritative": False,
        "timestamp": clock.now_iso(),
        "hash": root_hash,
    }
    if error is not None:
        proof["error"] = error
    return proof


def request_timestamp(authority: TimestampAuthority, root_hash: str, clock: Clock) -> dict:
    """Ask the authority to witness root_hash, falling back to a local stamp.

    Returns:
        Proof dict with source, authoritative, timestamp, hash and either
        response (authority answer) or error
    """
    try:
        response = authority.stamp(root_hash)
        if not isinstance(response, dict) or "timestamp" not in response:
            raise TimestampError(f"Authority returned no timestamp: {response!r}")
        witnessed = response.get("hash", root_hash)
        if witnessed != root_hash:
            raise TimestampError(f"Authority witnessed {witnessed}, expected {root_hash}")
    except Exception as e:
        # The tree is already stored; it must still get a proof
        logger.warning("Falling back to local timestamp: %s", e)
        return local_timestamp(root_hash, clock, SOURCE_LOCAL_FALLBACK, f"{type(e).__name__}: {e}")

    return {
        "source": response.get("source", "external"),
        "authoritative": True,
        "timestamp": response["timestamp"],
        "hash": root_hash,
        "response": response,
    }
