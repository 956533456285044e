"""
Commitment scheme: the out-of-circuit half of the relation.

    commitment    = Poseidon(secret, nullifier, amount)
    nullifierHash = Poseidon(nullifier)
    recipientHash = Poseidon(recipient)

Pure and deterministic. Every input must already be a canonical field
element; nothing is reduced modulo R.
"""

from __future__ import annotations

import secrets
from typing import Any, Mapping, Optional, Union

from shield.errors import FieldError, MalformedWitness
from shield.types import PublicSignals, Witness
from shield.zk.field import R, parse_int, require_canonical
from shield.zk.poseidon import poseidon_hash

WitnessLike = Union[Witness, Mapping[str, Any]]


def _canonical(value: Any, name: str) -> int:
    try:
        return require_canonical(value, name)
    except FieldError as e:
        raise MalformedWitness(
            f"{name} is not a canonical field element", ctx={"input": name}, cause=e
        ) from e


def commit(secret: Any, nullifier: Any, amount: Any) -> int:
    return poseidon_hash(
        [
            _canonical(secret, "secret"),
            _canonical(nullifier, "nullifier"),
            _canonical(amount, "amount"),
        ]
    )


def nullifier_hash_of(nullifier: Any) -> int:
    return poseidon_hash([_canonical(nullifier, "nullifier")])


def recipient_hash_of(recipient: Any) -> int:
    return poseidon_hash([_canonical(recipient, "recipient")])


def as_witness(w: WitnessLike) -> Witness:
    """Accept a Witness or a mapping of the four private inputs."""
    if isinstance(w, Witness):
        return w.validated()
    missing = [k for k in ("secret", "nullifier", "recipient", "amount") if k not in w]
    if missing:
        raise MalformedWitness("witness is missing inputs", ctx={"missing": missing})
    return Witness(
        secret=_canonical(w["secret"], "secret"),
        nullifier=_canonical(w["nullifier"], "nullifier"),
        recipient=_canonical(w["recipient"], "recipient"),
        amount=_canonical(w["amount"], "amount"),
    )


def public_signals_of(w: WitnessLike, threshold: Optional[Any] = None) -> PublicSignals:
    """
    Public signals implied by a witness. `threshold` is only given for the
    compliance variant and is passed through unchanged.
    """
    wit = as_witness(w)
    return PublicSignals(
        nullifier_hash=nullifier_hash_of(wit.nullifier),
        commitment=commit(wit.secret, wit.nullifier, wit.amount),
        recipient_hash=recipient_hash_of(wit.recipient),
        compliance_threshold=None if threshold is None else _canonical(threshold, "complianceThreshold"),
    )


def random_field_element() -> int:
    """Uniform non-zero element of the scalar field (fresh secrets and nullifiers)."""
    while True:
        x = secrets.randbelow(R)
        if x:
            return x


def recipient_from_address(address: str) -> int:
    """
    Map a 20-byte hex address (0x-prefixed or not) to a field element by
    reading it as a big-endian integer.
    """
    s = address.strip().lower()
    body = s[2:] if s.startswith("0x") else s
    if len(body) != 40:
        raise MalformedWitness("recipient address must be 20 bytes", ctx={"length": len(body) // 2})
    try:
        return parse_int("0x" + body)
    except FieldError as e:
        raise MalformedWitness("recipient address is not hex", cause=e) from e


__all__ = [
    "commit",
    "nullifier_hash_of",
    "recipient_hash_of",
    "as_witness",
    "public_signals_of",
    "random_field_element",
    "recipient_from_address",
]
