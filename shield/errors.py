"""
Typed exceptions for shield.

Every error carries a stable machine code, a human message and a small context
dict, mirroring how callers log and serialize failures across process
boundaries (`to_dict()` / `from_dict()` round-trip).

Hierarchy
---------
  ShieldError
  ├── FieldError            non-canonical / out-of-range field data
  ├── MalformedWitness      witness does not satisfy the relation
  ├── InvalidProof          verification failed at the gate
  │   └── VerifierKeyMismatch   proof names a key that is not current
  ├── ReplayedNullifier     nullifier hash already recorded
  ├── TransportFailure      nullifier recorded, delivery failed
  ├── GenerationCancelled   proof generation was cancelled
  ├── VerifierKeyError      unknown / empty / corrupt verifier key
  ├── ConfigError           invalid configuration value
  └── StoreError            ledger / audit backend problem

Verification itself never raises: it answers False. These errors are raised by
the generator, the gate and the storage layers around it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ErrorCode(str, Enum):
    """Canonical error codes."""

    UNKNOWN = "UNKNOWN"
    FIELD = "FIELD"
    MALFORMED_WITNESS = "MALFORMED_WITNESS"
    INVALID_PROOF = "INVALID_PROOF"
    VK_MISMATCH = "VK_MISMATCH"
    NULLIFIER_REUSE = "NULLIFIER_REUSE"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    CANCELLED = "CANCELLED"
    VK_REGISTRY = "VK_REGISTRY"
    CONFIG = "CONFIG"
    STORE = "STORE"


@dataclass(eq=False)
class ShieldError(Exception):
    """
    Base structured error.

    Fields:
      code:  stable machine code (ErrorCode | str)
      msg:   human-readable summary
      ctx:   small dict of contextual fields (hex strings, ids, labels)
      cause: optional underlying exception (not serialized)
    """

    code: ErrorCode | str = ErrorCode.UNKNOWN
    msg: str = "shield error"
    ctx: Dict[str, Any] = field(default_factory=dict)
    cause: Optional[BaseException] = None

    def __post_init__(self) -> None:
        if not isinstance(self.ctx, dict):
            self.ctx = {"_ctx_type_error": str(type(self.ctx)), "repr": repr(self.ctx)}

    def __str__(self) -> str:
        code = self.code.value if isinstance(self.code, ErrorCode) else self.code
        parts = [f"[{code}] {self.msg}"]
        if self.ctx:
            parts.append(f"ctx={self.ctx}")
        if self.cause:
            parts.append(f"cause={self.cause!r}")
        return " ".join(parts)

    def with_context(self, **extra: Any) -> "ShieldError":
        """Return a shallow copy with merged context."""
        merged = dict(self.ctx)
        merged.update(extra)
        return ShieldError(code=self.code, msg=self.msg, ctx=merged, cause=self.cause)

    def to_dict(self) -> Dict[str, Any]:
        code = self.code.value if isinstance(self.code, ErrorCode) else str(self.code)
        return {"code": code, "msg": self.msg, "ctx": self.ctx}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ShieldError":
        code_raw = d.get("code", ErrorCode.UNKNOWN)
        try:
            code: ErrorCode | str = ErrorCode(code_raw)
        except ValueError:
            code = str(code_raw)
        return ShieldError(
            code=code, msg=str(d.get("msg", "shield error")), ctx=dict(d.get("ctx", {}))
        )

    @classmethod
    def wrap(
        cls,
        code: ErrorCode | str,
        msg: str,
        *,
        ctx: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> "ShieldError":
        return ShieldError(code=code, msg=msg, ctx=dict(ctx or {}), cause=cause)


def _merge(base: Dict[str, Any], ctx: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if ctx:
        base.update(ctx)
    return base


class FieldError(ShieldError):
    """A value is not a canonical BN254 scalar-field element, or has no inverse."""

    def __init__(self, msg: str = "invalid field element", *, ctx: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(code=ErrorCode.FIELD, msg=msg, ctx=dict(ctx or {}))


class MalformedWitness(ShieldError):
    """The witness violates a constraint; `constraint` names the first one that failed."""

    def __init__(
        self,
        msg: str = "witness does not satisfy the circuit",
        *,
        constraint: Optional[str] = None,
        ctx: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        base_ctx: Dict[str, Any] = {}
        if constraint is not None:
            base_ctx["constraint"] = constraint
        super().__init__(
            code=ErrorCode.MALFORMED_WITNESS, msg=msg, ctx=_merge(base_ctx, ctx), cause=cause
        )

    @property
    def constraint(self) -> Optional[str]:
        return self.ctx.get("constraint")


class InvalidProof(ShieldError):
    """Proof did not verify against the current verifier key."""

    def __init__(
        self,
        msg: str = "invalid zk proof",
        *,
        nullifier_hash: Optional[str] = None,
        ctx: Optional[Mapping[str, Any]] = None,
        code: ErrorCode | str = ErrorCode.INVALID_PROOF,
    ) -> None:
        base_ctx: Dict[str, Any] = {}
        if nullifier_hash is not None:
            base_ctx["nullifier_hash"] = nullifier_hash
        super().__init__(code=code, msg=msg, ctx=_merge(base_ctx, ctx))


class VerifierKeyMismatch(InvalidProof):
    """The proof was produced against a verifier key that is no longer current."""

    def __init__(
        self,
        *,
        expected: str,
        got: str,
        nullifier_hash: Optional[str] = None,
    ) -> None:
        super().__init__(
            "proof bound to a superseded verifier key",
            nullifier_hash=nullifier_hash,
            ctx={"expected_vk_hash": expected, "got_vk_hash": got},
            code=ErrorCode.VK_MISMATCH,
        )


class ReplayedNullifier(ShieldError):
    """The nullifier hash has already been recorded by the gate."""

    def __init__(self, nullifier_hash: str, *, ctx: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(
            code=ErrorCode.NULLIFIER_REUSE,
            msg="nullifier already used",
            ctx=_merge({"nullifier_hash": nullifier_hash}, ctx),
        )

    @property
    def nullifier_hash(self) -> str:
        return self.ctx["nullifier_hash"]


class TransportFailure(ShieldError):
    """The transport raised after the nullifier was recorded; the nullifier stays used."""

    def __init__(
        self,
        msg: str = "transport failed after nullifier was recorded",
        *,
        nullifier_hash: Optional[str] = None,
        message_hash: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        ctx: Dict[str, Any] = {}
        if nullifier_hash is not None:
            ctx["nullifier_hash"] = nullifier_hash
        if message_hash is not None:
            ctx["message_hash"] = message_hash
        super().__init__(code=ErrorCode.TRANSPORT_FAILURE, msg=msg, ctx=ctx, cause=cause)


class GenerationCancelled(ShieldError):
    """Proof generation observed a cancel request between phases."""

    def __init__(self, phase: str) -> None:
        super().__init__(
            code=ErrorCode.CANCELLED, msg="proof generation cancelled", ctx={"phase": phase}
        )


class VerifierKeyError(ShieldError):
    """Unknown, empty or corrupt verifier key material."""

    def __init__(self, msg: str, *, circuit_id: Optional[str] = None, ctx: Optional[Mapping[str, Any]] = None) -> None:
        base_ctx: Dict[str, Any] = {}
        if circuit_id is not None:
            base_ctx["circuit_id"] = circuit_id
        super().__init__(code=ErrorCode.VK_REGISTRY, msg=msg, ctx=_merge(base_ctx, ctx))


class ConfigError(ShieldError):
    """An environment or file configuration value is invalid."""

    def __init__(self, msg: str, *, key: Optional[str] = None, value: Any = None) -> None:
        ctx: Dict[str, Any] = {}
        if key is not None:
            ctx["key"] = key
            ctx["value"] = value
        super().__init__(code=ErrorCode.CONFIG, msg=msg, ctx=ctx)


class StoreError(ShieldError):
    """Ledger or audit backend failure (bad URL, corrupt row)."""

    def __init__(self, msg: str, *, ctx: Optional[Mapping[str, Any]] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(code=ErrorCode.STORE, msg=msg, ctx=dict(ctx or {}), cause=cause)


def rethrow_as(code: ErrorCode | str, *, msg: str, **ctx: Any):
    """
    Context manager converting arbitrary exceptions into a ShieldError with the
    original attached as `cause` (and as __cause__).

      with rethrow_as(ErrorCode.STORE, msg="corrupt audit row", message_hash=h):
          ...
    """

    class _Ctx:
        def __enter__(self) -> None:
            return None

        def __exit__(self, exc_type, exc, tb) -> bool:
            if exc is None or isinstance(exc, ShieldError):
                return False
            raise ShieldError.wrap(code, msg, ctx=ctx, cause=exc) from exc

    return _Ctx()


__all__ = [
    "ErrorCode",
    "ShieldError",
    "FieldError",
    "MalformedWitness",
    "InvalidProof",
    "VerifierKeyMismatch",
    "ReplayedNullifier",
    "TransportFailure",
    "GenerationCancelled",
    "VerifierKeyError",
    "ConfigError",
    "StoreError",
    "rethrow_as",
]
