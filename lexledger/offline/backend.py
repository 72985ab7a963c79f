"""Remote backend clients consumed by the sync queue.

The queue only needs two capabilities per collection: upsert a record and
delete a record by id. Any failure, whether a rejection or a network
problem, surfaces as RemoteError and counts as a transient failure.

HttpBackendClient speaks the PostgREST dialect used by the hosted
backend (POST with merge-duplicates for upserts, DELETE with an eq filter).
"""
import requests

from ..core.constants import BACKEND_TIMEOUT_SECONDS
from ..core.errors import LexLedgerError


class RemoteError(LexLedgerError):
    """Remote rejection or network failure while applying a queue entry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BackendClient:
    """Interface for remote backends. Subclasses implement both methods."""

    def upsert(self, collection: str, record: dict) -> bool:
        raise NotImplementedError

    def delete(self, collection: str, record_id: str) -> bool:
        raise NotImplementedError


class HttpBackendClient(BackendClient):
    """REST backend client.

    Args:
        base_url: Root of the REST API, e.g. https://host/rest/v1
        api_key: Optional API key sent as apikey and bearer token
        timeout: Per-request timeout in seconds; a timeout is a transient failure
        session: Optional requests.Session (for connection reuse or tests)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, extra: dict | None = None) -> dict:
        headers = {"Content-Type": "application/json", "User-Agent": "LexLedger/1.0"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        if extra:
            headers.update(extra)
        return headers

    def _send(self, method: str, collection: str, **kwargs) -> bool:
        url = f"{self.base_url}/{collection}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RemoteError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteError(
                f"{method} {url} rejected with {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return True

    def upsert(self, collection: str, record: dict) -> bool:
        return self._send(
            "POST",
            collection,
            json=record,
            headers=self._headers({"Prefer": "resolution=merge-duplicates"}),
        )

    def delete(self, collection: str, record_id: str) -> bool:
        return self._send(
            "DELETE",
            collection,
            params={"id": f"eq.{record_id}"},
            headers=self._headers(),
        )
