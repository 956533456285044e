"""
Transport capability: hands an accepted message to whatever carries it to
the destination chain. The gate only needs a message id back; how delivery
happens is out of scope.

Implementations
---------------
- LoopbackTransport: in-process endpoint. Assigns deterministic message ids
  and keeps an outbox; can be told to fail the next sends (tests, demo).
- HttpTransport: JSON POST to a relayer endpoint via httpx. Only failures
  where the request never left the client (connect error, connect or pool
  timeout) are retried, with exponential backoff. Read timeouts and error
  responses are raised as-is: the relayer may already have the message.

Relayer endpoints (HttpTransport)
---------------------------------
POST {base}/send              {"destinationChainId", "destination", "payload"}
POST {base}/send-to-resource  {"destinationChainId", "resourceId", "payload"}
POST {base}/send-batch        {"destinationChainId", "items": [{"destination"|"resourceId", "payload"}]}
Responses: {"messageId": "0x…"} or, for batches, {"messageIds": [...]}.
Payloads travel as 0x-hex.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from hashlib import sha3_256
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx

log = logging.getLogger("shield.transport")


@runtime_checkable
class Transport(Protocol):
    def send(self, destination_id: int, destination: str, payload: bytes) -> str: ...

    def send_to_resource(self, destination_id: int, resource_id: str, payload: bytes) -> str: ...

    def send_batch(
        self, destination_id: int, destinations: Sequence[str], payloads: Sequence[bytes]
    ) -> List[str]: ...

    def send_to_resource_batch(
        self, destination_id: int, resource_ids: Sequence[str], payloads: Sequence[bytes]
    ) -> List[str]: ...


def _check_batch(targets: Sequence[Any], payloads: Sequence[bytes]) -> None:
    if len(targets) != len(payloads):
        raise ValueError("targets and payloads must have the same length")


# ----------------------------- Loopback -------------------------------------


@dataclass(frozen=True)
class OutboundMessage:
    message_id: str
    destination_id: int
    payload: bytes
    destination: Optional[str] = None
    resource_id: Optional[str] = None
    sent_at: float = 0.0


class LoopbackTransport:
    """
    In-process transport. Message ids are
    sha3_256(nonce ‖ destination_id ‖ target ‖ payload), so a fresh instance
    replays the same ids for the same sequence of sends.
    """

    def __init__(self, on_message: Optional[Callable[[OutboundMessage], None]] = None) -> None:
        self._lock = threading.Lock()
        self._nonce = 0
        self._outbox: List[OutboundMessage] = []
        self._failures: List[BaseException] = []
        self._on_message = on_message

    @property
    def outbox(self) -> List[OutboundMessage]:
        with self._lock:
            return list(self._outbox)

    def fail_next(self, exc: Optional[BaseException] = None, times: int = 1) -> None:
        """Make the next `times` sends raise `exc` (default ConnectionError)."""
        with self._lock:
            for _ in range(times):
                self._failures.append(exc or ConnectionError("loopback transport down"))

    def _deliver(self, destination_id: int, payload: bytes, *, destination: Optional[str] = None,
                 resource_id: Optional[str] = None) -> str:
        with self._lock:
            if self._failures:
                raise self._failures.pop(0)
            nonce = self._nonce
            self._nonce += 1
            target = destination if destination is not None else f"resource:{resource_id}"
            h = sha3_256()
            h.update(nonce.to_bytes(8, "big"))
            h.update(int(destination_id).to_bytes(8, "big"))
            h.update(target.encode("utf-8"))
            h.update(bytes(payload))
            msg = OutboundMessage(
                message_id="0x" + h.hexdigest(),
                destination_id=int(destination_id),
                payload=bytes(payload),
                destination=destination,
                resource_id=resource_id,
                sent_at=time.time(),
            )
            self._outbox.append(msg)
        if self._on_message is not None:
            self._on_message(msg)
        return msg.message_id

    def send(self, destination_id: int, destination: str, payload: bytes) -> str:
        return self._deliver(destination_id, payload, destination=destination)

    def send_to_resource(self, destination_id: int, resource_id: str, payload: bytes) -> str:
        return self._deliver(destination_id, payload, resource_id=resource_id)

    def send_batch(
        self, destination_id: int, destinations: Sequence[str], payloads: Sequence[bytes]
    ) -> List[str]:
        _check_batch(destinations, payloads)
        return [self.send(destination_id, d, p) for d, p in zip(destinations, payloads)]

    def send_to_resource_batch(
        self, destination_id: int, resource_ids: Sequence[str], payloads: Sequence[bytes]
    ) -> List[str]:
        _check_batch(resource_ids, payloads)
        return [self.send_to_resource(destination_id, r, p) for r, p in zip(resource_ids, payloads)]


# ----------------------------- HTTP -----------------------------------------

# the request never reached the relayer
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


class HttpTransport:
    """Synchronous relayer client; safe to use as a context manager."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        retries: int = 3,
        backoff_base: float = 0.25,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.retries = max(0, int(retries))
        self.backoff_base = float(backoff_base)
        hdrs = {"Accept": "application/json"}
        hdrs.update(headers or {})
        self._own_client = client is None
        self._client = client or httpx.Client(base_url=self.base_url, headers=hdrs, timeout=self.timeout)

    def close(self) -> None:
        if self._own_client:
            self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- API

    def send(self, destination_id: int, destination: str, payload: bytes) -> str:
        body = {"destinationChainId": int(destination_id), "destination": destination, "payload": _hex(payload)}
        return _message_id(self._post("/send", body))

    def send_to_resource(self, destination_id: int, resource_id: str, payload: bytes) -> str:
        body = {"destinationChainId": int(destination_id), "resourceId": resource_id, "payload": _hex(payload)}
        return _message_id(self._post("/send-to-resource", body))

    def send_batch(
        self, destination_id: int, destinations: Sequence[str], payloads: Sequence[bytes]
    ) -> List[str]:
        _check_batch(destinations, payloads)
        items = [{"destination": d, "payload": _hex(p)} for d, p in zip(destinations, payloads)]
        return self._batch(destination_id, items)

    def send_to_resource_batch(
        self, destination_id: int, resource_ids: Sequence[str], payloads: Sequence[bytes]
    ) -> List[str]:
        _check_batch(resource_ids, payloads)
        items = [{"resourceId": r, "payload": _hex(p)} for r, p in zip(resource_ids, payloads)]
        return self._batch(destination_id, items)

    # --- internals

    def _batch(self, destination_id: int, items: List[Dict[str, str]]) -> List[str]:
        data = self._post("/send-batch", {"destinationChainId": int(destination_id), "items": items})
        ids = data.get("messageIds")
        if not isinstance(ids, list) or len(ids) != len(items) or not all(isinstance(i, str) for i in ids):
            raise ValueError("relayer returned a malformed messageIds list")
        return ids

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._retry(lambda: self._client.post(path, json=body), path=path)
        self._raise_for_status(resp)
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("relayer response is not a JSON object")
        return data

    def _retry(self, op: Callable[[], httpx.Response], *, path: str) -> httpx.Response:
        for attempt in range(self.retries + 1):
            try:
                return op()
            except _NOT_SENT as e:
                if attempt >= self.retries:
                    raise
                log.debug("relayer unreachable, retrying", extra={"path": path, "attempt": attempt, "err": str(e)})
            time.sleep(self._backoff(attempt))
        raise AssertionError("unreachable")

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = None
            try:
                j = resp.json()
                detail = j.get("detail") or j.get("error") if isinstance(j, dict) else j
            except ValueError:
                pass
            msg = f"HTTP {resp.status_code} for {resp.request.method} {resp.request.url}"
            if detail:
                msg += f": {detail}"
            raise httpx.HTTPStatusError(msg, request=resp.request, response=resp) from e


def _hex(payload: bytes) -> str:
    return "0x" + bytes(payload).hex()


def _message_id(data: Dict[str, Any]) -> str:
    mid = data.get("messageId")
    if not isinstance(mid, str) or not mid:
        raise ValueError("relayer response has no messageId")
    return mid


def transport_from_url(url: str, *, timeout: float = 10.0, retries: int = 3) -> Transport:
    """Empty URL or `loopback:` gives a LoopbackTransport, anything else an HttpTransport."""
    if not url or url.strip() in ("loopback", "loopback:"):
        return LoopbackTransport()
    return HttpTransport(url, timeout=timeout, retries=retries)


__all__ = [
    "Transport",
    "OutboundMessage",
    "LoopbackTransport",
    "HttpTransport",
    "transport_from_url",
]
