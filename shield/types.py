"""
shield.types
============

Typed records using **msgspec**.

- `Witness`: the private inputs (secret, nullifier, recipient, amount). Lives
  only inside one generation call; never persisted, logged or transmitted.
- `PublicSignals`: nullifierHash, commitment, recipientHash and, for the
  compliance variant, complianceThreshold. `to_list()` / `from_list()` use
  the canonical wire order.
- `Groth16Proof`: snarkjs JSON layout of a proof (decimal strings).
- `ProofBundle`: proof + public signals + circuit id + the hash of the
  verifier key the proof was produced against.
- `SolidityCalldata`: (a, b, c, input) with the G2 limb swap applied.
- `VkRecord`: versioned verifier-key registry entry.
- `DispatchRecord` / `DispatchReceipt`: audit entries and gate results.

Field elements travel as decimal strings on the wire and as ints in memory.
"""

from __future__ import annotations

import json
from hashlib import sha3_256
from typing import Any, Dict, List, Optional

import msgspec

from shield.errors import FieldError, MalformedWitness
from shield.zk.circuit import COMPLIANCE_SIGNAL, PUBLIC_SIGNAL_ORDER
from shield.zk.field import require_canonical

__all__ = [
    "Witness",
    "PublicSignals",
    "Groth16Proof",
    "ProofBundle",
    "SolidityCalldata",
    "VkRecord",
    "DispatchStatus",
    "DispatchRecord",
    "DispatchReceipt",
    "canonical_json_bytes",
    "sha3_256_hex",
    "compute_vk_hash",
]


class Witness(msgspec.Struct, frozen=True):
    """Private inputs. `repr` never shows values."""

    secret: int
    nullifier: int
    recipient: int
    amount: int

    def __repr__(self) -> str:
        return "Witness(<redacted>)"

    __str__ = __repr__

    def validated(self) -> "Witness":
        """Return self after checking every value is a canonical field element."""
        for name in ("secret", "nullifier", "recipient", "amount"):
            try:
                require_canonical(getattr(self, name), name)
            except FieldError as e:
                raise MalformedWitness(
                    f"{name} is not a canonical field element", ctx={"input": name}, cause=e
                ) from e
        return self

    def as_inputs(self) -> Dict[str, int]:
        return {
            "secret": self.secret,
            "nullifier": self.nullifier,
            "recipient": self.recipient,
            "amount": self.amount,
        }


class PublicSignals(msgspec.Struct, frozen=True, omit_defaults=True, rename="camel"):
    nullifier_hash: int
    commitment: int
    recipient_hash: int
    compliance_threshold: Optional[int] = None

    def to_list(self) -> List[int]:
        """Canonical order: [nullifierHash, commitment, recipientHash, (complianceThreshold)]."""
        out = [self.nullifier_hash, self.commitment, self.recipient_hash]
        if self.compliance_threshold is not None:
            out.append(self.compliance_threshold)
        return out

    def to_strings(self) -> List[str]:
        return [str(v) for v in self.to_list()]

    def as_inputs(self) -> Dict[str, int]:
        out = dict(zip(PUBLIC_SIGNAL_ORDER, self.to_list()))
        if self.compliance_threshold is not None:
            out[COMPLIANCE_SIGNAL] = self.compliance_threshold
        return out

    @classmethod
    def from_list(cls, values: List[Any]) -> "PublicSignals":
        """Inverse of `to_list`; values must be canonical (decimal strings or ints)."""
        if len(values) not in (3, 4):
            raise FieldError("expected 3 or 4 public signals", ctx={"count": len(values)})
        ints = [require_canonical(v, "public signal") for v in values]
        return cls(
            nullifier_hash=ints[0],
            commitment=ints[1],
            recipient_hash=ints[2],
            compliance_threshold=ints[3] if len(ints) == 4 else None,
        )

    @property
    def nullifier_hash_hex(self) -> str:
        return "0x" + self.nullifier_hash.to_bytes(32, "big").hex()


class Groth16Proof(msgspec.Struct, frozen=True):
    pi_a: List[str]
    pi_b: List[List[str]]
    pi_c: List[str]
    protocol: str = "groth16"
    curve: str = "bn128"

    def to_json(self) -> Dict[str, Any]:
        return msgspec.to_builtins(self)


class ProofBundle(msgspec.Struct, frozen=True, rename="camel"):
    """What the generator hands to the sender and the sender hands to the gate."""

    proof: Groth16Proof
    public_signals: PublicSignals
    circuit_id: str
    vk_hash: str = ""

    def to_json(self) -> Dict[str, Any]:
        out = msgspec.to_builtins(self)
        out["publicSignals"] = self.public_signals.to_strings()
        return out

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> "ProofBundle":
        return cls(
            proof=msgspec.convert(obj["proof"], Groth16Proof),
            public_signals=PublicSignals.from_list(list(obj["publicSignals"])),
            circuit_id=str(obj.get("circuitId", "")),
            vk_hash=str(obj.get("vkHash", "")),
        )


class SolidityCalldata(msgspec.Struct, frozen=True, rename="camel"):
    a: List[str]
    b: List[List[str]]
    c: List[str]
    public_signals: List[str]

    def as_args(self) -> List[Any]:
        return [self.a, self.b, self.c, self.public_signals]


class VkRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """
    Verifier-key registry entry.

    The canonical hash covers only {kind, vk_format, vk, fri_params}; metadata
    and the version counter can change without changing the key identity.
    """

    circuit_id: str
    kind: str
    vk_format: str
    vk: Optional[Dict[str, Any]] = None
    fri_params: Optional[Dict[str, Any]] = None
    vk_hash: str = ""
    version: int = 1
    meta: Dict[str, Any] = msgspec.field(default_factory=dict)


DispatchStatus = str  # "delivered" | "recorded_not_delivered"


class DispatchRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    message_hash: str
    nullifier_hash: str
    commitment: str
    public_signals: List[str]
    sender: str
    destination_chain_id: int
    payload_digest: str
    vk_hash: str
    status: DispatchStatus
    created_at: float
    destination: Optional[str] = None
    resource_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class DispatchReceipt(msgspec.Struct, frozen=True):
    message_id: str
    message_hash: str
    nullifier_hash: str


def canonical_json_bytes(obj: Any) -> bytes:
    """Deterministic JSON bytes: sorted keys, compact separators, UTF-8."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sha3_256_hex(data: bytes) -> str:
    return sha3_256(data).hexdigest()


def compute_vk_hash(
    kind: str,
    vk_format: str,
    vk: Optional[Dict[str, Any]],
    fri_params: Optional[Dict[str, Any]] = None,
) -> str:
    """"sha3-256:<hex>" over canonical {kind, vk_format, vk, fri_params}."""
    payload = {"kind": kind, "vk_format": vk_format, "vk": vk, "fri_params": fri_params}
    return "sha3-256:" + sha3_256_hex(canonical_json_bytes(payload))
