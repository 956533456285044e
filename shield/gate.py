"""
Dispatch gate: the only writer of the nullifier ledger.

For every message:

  1. replay pre-check     nullifierHash already used  → ReplayedNullifier
  2. verify               against the *current* key   → InvalidProof / VerifierKeyMismatch
  3. record               atomic check-and-set        → ReplayedNullifier if a racing
                                                        dispatch got there first
  4. transport            the audit record is written as recorded_not_delivered
                          first; on success it becomes delivered with the message
                          id, on failure the nullifier stays used, the record keeps
                          the error and TransportFailure is raised

Steps 1 and 2 change no state. Verification runs outside any lock; only the
check-and-set in step 3 is serialized (by the ledger).

    gate = DispatchGate(registry=reg, ledger=open_ledger("memory:"), transport=LoopbackTransport())
    receipt = gate.send_private_message(dst_chain_id, destination, payload, bundle, sender="0xabc…")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from hashlib import sha3_256
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

import msgspec

from shield import metrics
from shield.audit import AuditLog, MemoryAuditLog
from shield.errors import (
    FieldError,
    InvalidProof,
    ReplayedNullifier,
    ShieldError,
    StoreError,
    TransportFailure,
    VerifierKeyMismatch,
)
from shield.ledger import NullifierLedger, nullifier_key
from shield.logging import short_hex, trace_scope
from shield.transport import Transport
from shield.types import DispatchReceipt, DispatchRecord, Groth16Proof, ProofBundle, PublicSignals, sha3_256_hex
from shield.vk_registry import VkRegistry
from shield.zk.backend import verify_groth16_timed

log = logging.getLogger("shield.gate")

Verifier = Callable[[Mapping[str, Any], Mapping[str, Any], Sequence[Any]], bool]
ProofLike = Union[ProofBundle, Groth16Proof, Mapping[str, Any]]
SignalsLike = Union[PublicSignals, Sequence[Any], None]

DELIVERED = "delivered"
RECORDED_NOT_DELIVERED = "recorded_not_delivered"


def _packed(value: str, width: int) -> bytes:
    """0x-hex of exactly `width` bytes packs as raw bytes; anything else as UTF-8."""
    s = value.strip()
    body = s[2:] if s[:2].lower() == "0x" else None
    if body is not None and len(body) == 2 * width:
        try:
            return bytes.fromhex(body)
        except ValueError:
            pass
    return s.encode("utf-8")


def message_hash_of(
    sender: str,
    destination_chain_id: int,
    target: str,
    payload: bytes,
    nullifier_hash: int,
    timestamp: int,
    *,
    target_width: int = 20,
) -> str:
    """
    sha3_256(sender ‖ dstChainId ‖ destination ‖ payload ‖ nullifierHash ‖ timestamp),
    tightly packed: addresses as 20 bytes, integers as 32-byte big-endian,
    resource ids (target_width=32) as 32 bytes.
    """
    h = sha3_256()
    h.update(_packed(sender, 20))
    h.update(int(destination_chain_id).to_bytes(32, "big"))
    h.update(_packed(target, target_width))
    h.update(bytes(payload))
    h.update(int(nullifier_hash).to_bytes(32, "big"))
    h.update(int(timestamp).to_bytes(32, "big"))
    return "0x" + h.hexdigest()


@dataclass(frozen=True)
class DispatchRequest:
    """One item of a batch dispatch. Exactly one of destination / resource_id."""

    destination_chain_id: int
    payload: bytes
    proof: ProofLike
    sender: str
    destination: Optional[str] = None
    resource_id: Optional[str] = None
    public_signals: SignalsLike = None


@dataclass(frozen=True)
class BatchOutcome:
    receipt: Optional[DispatchReceipt] = None
    error: Optional[ShieldError] = None

    @property
    def ok(self) -> bool:
        return self.receipt is not None


class DispatchGate:
    def __init__(
        self,
        *,
        registry: VkRegistry,
        ledger: NullifierLedger,
        transport: Transport,
        audit: Optional[AuditLog] = None,
        verifier: Verifier = verify_groth16_timed,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.transport = transport
        self.audit = audit if audit is not None else MemoryAuditLog()
        self._verify = verifier
        self._clock = clock

    # ---- inputs ----

    @staticmethod
    def _split(proof: ProofLike, public_signals: SignalsLike) -> tuple:
        """(proof_json, PublicSignals, claimed vk_hash or None)."""
        vk_hash: Optional[str] = None
        if isinstance(proof, ProofBundle):
            proof_json = proof.proof.to_json()
            signals: SignalsLike = proof.public_signals if public_signals is None else public_signals
            vk_hash = proof.vk_hash or None
        elif isinstance(proof, Groth16Proof):
            proof_json, signals = proof.to_json(), public_signals
        else:
            proof_json, signals = dict(proof), public_signals
        if signals is None:
            raise InvalidProof("public signals are missing")
        if not isinstance(signals, PublicSignals):
            try:
                signals = PublicSignals.from_list(list(signals))
            except FieldError as e:
                raise InvalidProof("public signals are not canonical field elements", ctx={"reason": e.msg}) from e
        return proof_json, signals, vk_hash

    # ---- core flow ----

    def _dispatch(
        self,
        *,
        destination_chain_id: int,
        payload: bytes,
        proof: ProofLike,
        public_signals: SignalsLike,
        sender: str,
        destination: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> DispatchReceipt:
        if (destination is None) == (resource_id is None):
            raise ValueError("exactly one of destination / resource_id is required")
        with trace_scope(component="gate"):
            try:
                return self._run(
                    destination_chain_id, bytes(payload), proof, public_signals, sender, destination, resource_id
                )
            except ReplayedNullifier:
                metrics.record_dispatch("replay")
                raise
            except VerifierKeyMismatch:
                metrics.record_dispatch("vk_mismatch")
                raise
            except InvalidProof:
                metrics.record_dispatch("invalid")
                raise
            except TransportFailure:
                metrics.record_dispatch("transport_failure")
                raise

    def _run(
        self,
        destination_chain_id: int,
        payload: bytes,
        proof: ProofLike,
        public_signals: SignalsLike,
        sender: str,
        destination: Optional[str],
        resource_id: Optional[str],
    ) -> DispatchReceipt:
        proof_json, signals, claimed_vk = self._split(proof, public_signals)
        nh = signals.nullifier_hash
        try:
            nh_hex = nullifier_key(nh)
        except FieldError as e:
            raise InvalidProof("nullifierHash is not a canonical field element") from e

        # 1. replay pre-check
        if self.ledger.is_used(nh):
            log.info("replay rejected", extra={"nullifier": short_hex(nh_hex)})
            raise ReplayedNullifier(nh_hex)

        # 2. verify against the current key
        current = self.registry.current()
        if claimed_vk is not None and claimed_vk != current.vk_hash:
            log.info(
                "proof bound to superseded key",
                extra={"nullifier": short_hex(nh_hex), "got_vk": claimed_vk, "current_vk": current.vk_hash},
            )
            raise VerifierKeyMismatch(expected=current.vk_hash, got=claimed_vk, nullifier_hash=nh_hex)
        if not self._verify(current.vk or {}, proof_json, signals.to_list()):
            log.info("proof rejected", extra={"nullifier": short_hex(nh_hex), "circuit_id": current.circuit_id})
            raise InvalidProof(nullifier_hash=nh_hex, ctx={"circuit_id": current.circuit_id})

        # 3. atomic record
        if not self.ledger.try_record(nh):
            log.info("replay rejected at record", extra={"nullifier": short_hex(nh_hex)})
            raise ReplayedNullifier(nh_hex)
        metrics.set_ledger_size(self.ledger.size())

        # 4. transport
        ts = int(self._clock())
        target = destination if destination is not None else str(resource_id)
        msg_hash = message_hash_of(
            sender,
            destination_chain_id,
            target,
            payload,
            nh,
            ts,
            target_width=20 if destination is not None else 32,
        )
        record = DispatchRecord(
            message_hash=msg_hash,
            nullifier_hash=nh_hex,
            commitment=str(signals.commitment),
            public_signals=signals.to_strings(),
            sender=sender,
            destination_chain_id=int(destination_chain_id),
            payload_digest="sha3-256:" + sha3_256_hex(payload),
            vk_hash=current.vk_hash,
            status=RECORDED_NOT_DELIVERED,
            created_at=float(ts),
            destination=destination,
            resource_id=resource_id,
        )
        # stays recorded_not_delivered unless the send returns
        self.audit.put(record)
        try:
            if destination is not None:
                message_id = self.transport.send(destination_chain_id, destination, payload)
            else:
                message_id = self.transport.send_to_resource(destination_chain_id, str(resource_id), payload)
        except Exception as e:  # noqa: BLE001
            log.warning(
                "transport failed after nullifier was recorded",
                extra={"nullifier": short_hex(nh_hex), "message_hash": msg_hash, "err": str(e)},
            )
            self._update_audit(msgspec.structs.replace(record, error=f"{type(e).__name__}: {e}"))
            raise TransportFailure(nullifier_hash=nh_hex, message_hash=msg_hash, cause=e) from e

        self._update_audit(msgspec.structs.replace(record, status=DELIVERED, message_id=message_id))
        metrics.record_dispatch("delivered")
        log.info(
            "private message dispatched",
            extra={"nullifier": short_hex(nh_hex), "message_hash": msg_hash, "message_id": message_id},
        )
        return DispatchReceipt(message_id=message_id, message_hash=msg_hash, nullifier_hash=nh_hex)

    def _update_audit(self, record: DispatchRecord) -> None:
        """
        Post-transport audit update. The outcome of the send is already fixed
        at this point, so a store failure is logged and the outcome is kept.
        """
        try:
            self.audit.put(record)
        except StoreError as e:
            log.error(
                "audit update failed after transport",
                extra={"message_hash": record.message_hash, "status": record.status, "err": str(e)},
            )

    # ---- public entry points ----

    def dispatch(
        self,
        proof: ProofLike,
        public_signals: SignalsLike,
        payload: bytes,
        destination: str,
        sender: str,
        *,
        destination_chain_id: int = 0,
    ) -> str:
        """Verify → record → transport; returns the transport's message id."""
        return self._dispatch(
            destination_chain_id=destination_chain_id,
            payload=payload,
            proof=proof,
            public_signals=public_signals,
            sender=sender,
            destination=destination,
        ).message_id

    def send_private_message(
        self,
        destination_chain_id: int,
        destination: str,
        payload: bytes,
        proof: ProofLike,
        public_signals: SignalsLike = None,
        *,
        sender: str,
    ) -> DispatchReceipt:
        return self._dispatch(
            destination_chain_id=destination_chain_id,
            payload=payload,
            proof=proof,
            public_signals=public_signals,
            sender=sender,
            destination=destination,
        )

    def send_private_message_to_resource(
        self,
        destination_chain_id: int,
        resource_id: str,
        payload: bytes,
        proof: ProofLike,
        public_signals: SignalsLike = None,
        *,
        sender: str,
    ) -> DispatchReceipt:
        return self._dispatch(
            destination_chain_id=destination_chain_id,
            payload=payload,
            proof=proof,
            public_signals=public_signals,
            sender=sender,
            resource_id=resource_id,
        )

    def send_private_messages(self, requests: Sequence[DispatchRequest]) -> List[BatchOutcome]:
        """Each request is dispatched on its own; one failure does not stop the rest."""
        out: List[BatchOutcome] = []
        for req in requests:
            try:
                receipt = self._dispatch(
                    destination_chain_id=req.destination_chain_id,
                    payload=req.payload,
                    proof=req.proof,
                    public_signals=req.public_signals,
                    sender=req.sender,
                    destination=req.destination,
                    resource_id=req.resource_id,
                )
            except ShieldError as e:
                out.append(BatchOutcome(error=e))
            else:
                out.append(BatchOutcome(receipt=receipt))
        return out

    # ---- queries ----

    def is_nullifier_used(self, nullifier_hash: Any) -> bool:
        return self.ledger.is_used(nullifier_hash)

    def is_message_recorded(self, message_id: str) -> bool:
        return self.audit.has_message_id(message_id)

    def is_message_verified(self, message_hash: str) -> bool:
        return self.audit.has_message_hash(message_hash)


__all__ = [
    "DELIVERED",
    "RECORDED_NOT_DELIVERED",
    "message_hash_of",
    "DispatchRequest",
    "BatchOutcome",
    "DispatchGate",
]
