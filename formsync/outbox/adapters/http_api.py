from __future__ import annotations

import logging

import httpx

from formsync.core.errors import ApplicationFailure, TransportFailure
from formsync.outbox.adapters.base import REJECTED, SENT, TRANSPORT_FAILED, SendResult

log = logging.getLogger("http_api_adapter")


def _truncate(s: str, n: int = 200) -> str:
    s = s or ""
    return s if len(s) <= n else s[:n] + "…"


class HttpApiAdapter:
    """Delivers mutations to the remote reporting API over HTTP.

    Classification happens here and nowhere else:
    - no response (connect refused, timeout, DNS) -> TRANSPORT_FAILED
    - any response outside 2xx                   -> REJECTED
    - 2xx                                        -> SENT
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = 10.0,
        health_path: str = "/api/health",
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.health_path = health_path
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout_s, transport=self._transport)

    def _headers(self, owner_id: str, version_token: str | None = None) -> dict:
        headers = {
            "Accept": "application/json",
            "User-Agent": "formsync",
            "X-User-Id": owner_id,
        }
        if version_token:
            headers["If-Match"] = version_token
        return headers

    def _request(self, method: str, url: str, *, headers: dict, body: dict | None = None) -> httpx.Response:
        try:
            with self._client() as client:
                resp = client.request(method, url, headers=headers, json=body)
        except httpx.TransportError as e:
            # ConnectError, TimeoutException, NetworkError, ... : nothing came back.
            raise TransportFailure(f"{type(e).__name__}:{e}") from e
        if not resp.is_success:
            raise ApplicationFailure(resp.status_code, _truncate(resp.text, 200))
        return resp

    def send(
        self, *, method: str, url: str, body: dict, owner_id: str, version_token: str | None = None
    ) -> SendResult:
        try:
            resp = self._request(method, url, headers=self._headers(owner_id, version_token), body=body)
        except TransportFailure as e:
            log.info("Transport failure for %s %s: %s", method, url, str(e))
            return SendResult(status=TRANSPORT_FAILED, reason=f"transport:{e}")
        except ApplicationFailure as e:
            log.warning("Remote API rejected %s %s with %s", method, url, e.status_code)
            return SendResult(
                status=REJECTED,
                status_code=e.status_code,
                reason=f"http_{e.status_code}:{e.detail}",
                raw_response={"status_code": e.status_code, "text": e.detail},
            )

        raw: dict | None = None
        if resp.content:
            try:
                j = resp.json()
                raw = j if isinstance(j, dict) else {"data": j}
            except ValueError:
                raw = {"text": _truncate(resp.text, 1000)}
        return SendResult(status=SENT, status_code=resp.status_code, raw_response=raw)

    def fetch(self, *, url: str, owner_id: str) -> dict | None:
        """GET a remote form record.

        The reporting API answers `{"exists": bool, "data": {...}}`. Returns
        the data dict, or None when the record does not exist yet. Raises
        TransportFailure / ApplicationFailure.
        """
        resp = self._request("GET", url, headers=self._headers(owner_id))
        try:
            j = resp.json()
        except ValueError as e:
            raise ApplicationFailure(resp.status_code, f"non-json response: {_truncate(resp.text)}") from e
        if not isinstance(j, dict) or not j.get("exists"):
            return None
        data = j.get("data")
        return data if isinstance(data, dict) else None

    def ping(self) -> bool:
        """True when the remote API answers at all; any HTTP status counts as reachable."""
        try:
            with self._client() as client:
                client.get(self.health_path)
            return True
        except httpx.TransportError:
            return False
