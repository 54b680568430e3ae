from __future__ import annotations

import httpx
from pydantic import ValidationError

from meraki.core.errors import TransportFailure
from meraki.schemas.sync_v1 import ChangeEntryV1, PullResponseV1, PushRequestV1, PushResponseV1, PushResultV1


def _truncate(s: str, n: int = 200) -> str:
    s = s or ""
    return s if len(s) <= n else s[:n] + "…"


class HttpTransport:
    """JSON over HTTP against the reference backend (`POST /sync/push`, `GET /sync/pull`).

    Identity is opaque: the user id travels in `X-User-Id`, the device id in
    `X-Device-Id`. 5xx and network errors are retryable, 4xx are not.
    """

    def __init__(
        self,
        *,
        base_url: str,
        user_id: str,
        device_id: str,
        timeout_s: float = 15.0,
        client: httpx.Client | None = None,
    ):
        self.user_id = user_id
        self.device_id = device_id
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout_s)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _headers(self) -> dict[str, str]:
        return {
            "X-User-Id": self.user_id,
            "X-Device-Id": self.device_id,
            "Accept": "application/json",
            "User-Agent": "meraki-sync",
        }

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            resp = self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise TransportFailure(f"{method} {url} failed: {type(e).__name__}: {e}", retryable=True) from e

        if resp.status_code >= 400:
            raise TransportFailure(
                f"{method} {url} -> http_{resp.status_code}: {_truncate(resp.text)}",
                retryable=resp.status_code >= 500 or resp.status_code == 429,
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise TransportFailure(f"{method} {url} returned non-JSON body: {_truncate(resp.text)}") from e

    def push(self, entries: list[ChangeEntryV1]) -> list[PushResultV1]:
        body = PushRequestV1(device_id=self.device_id, entries=entries).model_dump(mode="json", by_alias=True)
        data = self._request("POST", "/sync/push", json=body)
        try:
            return PushResponseV1.model_validate(data).results
        except ValidationError as e:
            raise TransportFailure(f"malformed push response: {e}", retryable=False) from e

    def pull(self, since: int, limit: int) -> PullResponseV1:
        data = self._request("GET", "/sync/pull", params={"since": since, "limit": limit})
        try:
            return PullResponseV1.model_validate(data)
        except ValidationError as e:
            raise TransportFailure(f"malformed pull response: {e}", retryable=False) from e
