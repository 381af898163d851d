from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from .config import ConsulSettings
from .errors import StoreError


logger = logging.getLogger(__name__)

SNAPSHOT_PATH = "/v1/snapshot"
INDEX_HEADER = "X-Consul-Index"
TOKEN_HEADER = "X-Consul-Token"

_RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass
class Snapshot:
    data: bytes
    index: int  # raft index the snapshot was taken at


class ConsulSnapshotClient:
    """
    Minimal Consul snapshot API client.

    Notes
    - `save()` streams `GET /v1/snapshot`; the body is an opaque gzipped
      archive and `X-Consul-Index` carries the last applied index.
    - `save()` retries transport errors and 5xx with backoff (it is read-only).
      `restore()` is a single attempt.
    - Every failure surfaces as `StoreError`.
    """

    def __init__(
        self,
        settings: Optional[ConsulSettings] = None,
        *,
        client: Optional[httpx.Client] = None,
        max_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._settings = settings or ConsulSettings.from_env()
        self._owns_client = client is None
        headers: Dict[str, str] = {}
        if self._settings.token:
            headers[TOKEN_HEADER] = self._settings.token
        if client is None:
            client = httpx.Client(
                base_url=self._settings.base_url,
                timeout=self._settings.timeout,
                headers=headers,
            )
        else:
            client.headers.update(headers)
        self._client = client
        self._max_attempts = max_attempts
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ConsulSnapshotClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def save(self) -> Snapshot:
        """Take a snapshot of the cluster state."""
        resp = self._get_snapshot()
        raw_index = resp.headers.get(INDEX_HEADER)
        if raw_index is None:
            raise StoreError(f"Consul snapshot response has no {INDEX_HEADER} header")
        try:
            index = int(raw_index)
        except ValueError as exc:
            raise StoreError(f"Invalid {INDEX_HEADER} header: {raw_index!r}") from exc

        data = resp.content
        logger.debug("Took consul snapshot at index %d (%d bytes)", index, len(data))
        return Snapshot(data=data, index=index)

    def restore(self, data: bytes) -> None:
        """Replace the cluster state with `data` (a snapshot from `save`)."""
        try:
            resp = self._client.put(SNAPSHOT_PATH, content=data)
        except httpx.HTTPError as exc:
            raise StoreError(f"Failed to restore consul snapshot: {exc}") from exc
        if resp.status_code // 100 != 2:
            raise StoreError(
                f"HTTP {resp.status_code} from consul snapshot restore: {resp.text[:200]}"
            )
        logger.debug("Restored consul snapshot (%d bytes)", len(data))

    # --------------- Internal ---------------
    def _get_snapshot(self) -> httpx.Response:
        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.get(SNAPSHOT_PATH)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code == 200:
                    return resp
                if resp.status_code not in _RETRYABLE_STATUS:
                    raise StoreError(
                        f"HTTP {resp.status_code} from consul snapshot: {resp.text[:200]}"
                    )
                last_exc = StoreError(f"HTTP {resp.status_code} from consul snapshot")

            attempt += 1
            if attempt < self._max_attempts:
                logger.warning("Consul snapshot attempt %d failed: %s", attempt, last_exc)
                self._sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        raise StoreError(f"Failed to get consul snapshot after {attempt} attempts: {last_exc}") from last_exc


__all__ = ["ConsulSnapshotClient", "Snapshot"]
