"""
Verifier-key registry with a *current* pointer.

The gate verifies every proof against `current()`. Rotating the pointer is
the only privileged operation; it never touches the nullifier ledger, and a
proof produced against the previous key is from then on reported as a
`VerifierKeyMismatch`.

File shape (JSON, written atomically)
-------------------------------------
{
  "schema_version": "1",
  "current": "<circuit_id>" | null,
  "entries": {
    "<circuit_id>": {
      "circuit_id": "...",
      "kind": "groth16_bn254",
      "vk_format": "snarkjs",
      "vk": {...},
      "vk_hash": "sha3-256:<hex>",
      "version": 1,
      "meta": {...}
    }
  },
  "history": [{"circuit_id": "...", "old_hash": ..., "new_hash": "...", "at": 1700000000.0}]
}
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import msgspec

from shield.errors import VerifierKeyError
from shield.types import VkRecord, compute_vk_hash
from shield.zk.serialization import load_json, save_json

log = logging.getLogger("shield.vk_registry")

SCHEMA_VERSION = "1"


@dataclass(frozen=True)
class VerifierUpdated:
    """Emitted on every rotation of the current pointer."""

    old_hash: Optional[str]
    new_hash: str
    old_circuit_id: Optional[str]
    new_circuit_id: str
    at: float


Listener = Callable[[VerifierUpdated], None]


def _is_empty(vk: Any) -> bool:
    return not vk or (isinstance(vk, dict) and not vk.get("IC"))


def make_record(
    circuit_id: str,
    vk: Dict[str, Any],
    *,
    kind: str = "groth16_bn254",
    vk_format: str = "snarkjs",
    meta: Optional[Dict[str, Any]] = None,
) -> VkRecord:
    return VkRecord(
        circuit_id=circuit_id,
        kind=kind,
        vk_format=vk_format,
        vk=vk,
        vk_hash=compute_vk_hash(kind, vk_format, vk),
        meta=dict(meta or {}),
    )


class VkRegistry:
    """
    Thread-safe, optionally file-backed. Without a `path` the registry lives
    only in memory.
    """

    def __init__(self, path: Optional[Path | str] = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._entries: Dict[str, VkRecord] = {}
        self._current: Optional[str] = None
        self._history: List[Dict[str, Any]] = []
        self._listeners: List[Listener] = []
        if self._path is not None and self._path.exists():
            self._load()

    # ---- persistence ----

    def _load(self) -> None:
        assert self._path is not None
        try:
            raw = load_json(self._path)
        except ValueError as e:
            raise VerifierKeyError("registry file is not valid JSON", ctx={"path": str(self._path)}) from e
        if raw.get("schema_version") != SCHEMA_VERSION:
            raise VerifierKeyError(
                "unsupported registry schema_version",
                ctx={"path": str(self._path), "schema_version": raw.get("schema_version")},
            )
        try:
            entries = {
                cid: msgspec.convert(body, VkRecord) for cid, body in (raw.get("entries") or {}).items()
            }
        except msgspec.ValidationError as e:
            raise VerifierKeyError("corrupt registry entry", ctx={"path": str(self._path)}) from e
        current = raw.get("current")
        if current is not None and current not in entries:
            raise VerifierKeyError("current pointer names an unknown key", circuit_id=current)
        self._entries = entries
        self._current = current
        self._history = list(raw.get("history") or [])

    def _save(self) -> None:
        if self._path is None:
            return
        save_json(
            self._path,
            {
                "schema_version": SCHEMA_VERSION,
                "current": self._current,
                "entries": {cid: msgspec.to_builtins(r) for cid, r in sorted(self._entries.items())},
                "history": self._history,
            },
        )

    # ---- listeners ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a rotation listener; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # ---- API ----

    def register(self, record: VkRecord, *, overwrite: bool = False) -> VkRecord:
        """
        Add a key. Re-registering a circuit id with different material needs
        `overwrite=True` and bumps the version; identical material is a no-op.
        """
        if not record.circuit_id:
            raise VerifierKeyError("circuit_id must be non-empty")
        if _is_empty(record.vk) and not record.fri_params:
            raise VerifierKeyError("verifier key is empty", circuit_id=record.circuit_id)
        vk_hash = compute_vk_hash(record.kind, record.vk_format, record.vk, record.fri_params)
        if record.vk_hash and record.vk_hash != vk_hash:
            raise VerifierKeyError(
                "vk_hash does not match key material",
                circuit_id=record.circuit_id,
                ctx={"declared": record.vk_hash, "computed": vk_hash},
            )
        with self._lock:
            prev = self._entries.get(record.circuit_id)
            if prev is not None:
                if prev.vk_hash == vk_hash:
                    return prev
                if not overwrite:
                    raise VerifierKeyError(
                        "circuit id already registered with different key material",
                        circuit_id=record.circuit_id,
                    )
            stored = msgspec.structs.replace(
                record, vk_hash=vk_hash, version=(prev.version + 1) if prev else record.version
            )
            self._entries[record.circuit_id] = stored
            event = None
            if prev is not None and self._current == record.circuit_id:
                event = self._record_event(prev, stored)
            self._save()
            listeners = list(self._listeners)
        log.info(
            "verifier key registered",
            extra={"circuit_id": stored.circuit_id, "vk_hash": stored.vk_hash, "version": stored.version},
        )
        if event is not None:
            for fn in listeners:
                fn(event)
        return stored

    def get(self, circuit_id: str) -> VkRecord:
        with self._lock:
            try:
                return self._entries[circuit_id]
            except KeyError:
                raise VerifierKeyError("unknown circuit id", circuit_id=circuit_id) from None

    def list_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def current(self) -> VkRecord:
        with self._lock:
            if self._current is None:
                raise VerifierKeyError("no current verifier key")
            return self._entries[self._current]

    def current_id(self) -> Optional[str]:
        with self._lock:
            return self._current

    def rotate(self, circuit_id: str) -> Optional[VerifierUpdated]:
        """
        Point `current` at a registered, non-empty key. Privileged.
        Rotating to the key that is already current changes nothing and
        returns None.
        """
        with self._lock:
            new = self.get(circuit_id)
            if _is_empty(new.vk) and not new.fri_params:
                raise VerifierKeyError("refusing to rotate to an empty key", circuit_id=circuit_id)
            if self._current == circuit_id:
                return None
            old = self._entries.get(self._current) if self._current is not None else None
            self._current = circuit_id
            event = self._record_event(old, new)
            self._save()
            listeners = list(self._listeners)
        log.warning(
            "verifier key rotated",
            extra={"circuit_id": circuit_id, "old_hash": event.old_hash, "new_hash": event.new_hash},
        )
        for fn in listeners:
            fn(event)
        return event

    def _record_event(self, old: Optional[VkRecord], new: VkRecord) -> VerifierUpdated:
        # caller holds the lock
        event = VerifierUpdated(
            old_hash=old.vk_hash if old else None,
            new_hash=new.vk_hash,
            old_circuit_id=old.circuit_id if old else None,
            new_circuit_id=new.circuit_id,
            at=time.time(),
        )
        self._history.append(
            {"circuit_id": new.circuit_id, "old_hash": event.old_hash, "new_hash": event.new_hash, "at": event.at}
        )
        return event

    def history(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._history)

    def verify_integrity(self) -> Dict[str, bool]:
        """Recompute every stored vk_hash; maps circuit id → hash matches."""
        with self._lock:
            entries = dict(self._entries)
        return {
            cid: compute_vk_hash(r.kind, r.vk_format, r.vk, r.fri_params) == r.vk_hash
            for cid, r in entries.items()
        }


__all__ = ["SCHEMA_VERSION", "VerifierUpdated", "Listener", "make_record", "VkRegistry"]
