"""
The privacy relation, as one parameterized circuit with two named variants.

Public signals, in wire order (part of the protocol):

    [nullifierHash, commitment, recipientHash]                        base
    [nullifierHash, commitment, recipientHash, complianceThreshold]   compliance

Private inputs: secret, nullifier, recipient, amount.

Relation:
    commitment    == Poseidon(secret, nullifier, amount)
    nullifierHash == Poseidon(nullifier)
    recipientHash == Poseidon(recipient)
    amount fits in `range_bits` bits
  compliance only:
    complianceThreshold fits in `range_bits` bits
    amount < complianceThreshold
    0 < amount
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from shield.version import PROTOCOL_VERSION

from . import gadgets as g
from .poseidon import params_for_width
from .r1cs import ConstraintSystem

RANGE_BITS = 64

PUBLIC_SIGNAL_ORDER: Tuple[str, ...] = ("nullifierHash", "commitment", "recipientHash")
COMPLIANCE_SIGNAL = "complianceThreshold"
PRIVATE_INPUTS: Tuple[str, ...] = ("secret", "nullifier", "recipient", "amount")


class Variant(str, Enum):
    BASE = "base"
    COMPLIANCE = "compliance"


@dataclass(frozen=True)
class CircuitConfig:
    variant: Variant = Variant.BASE
    range_bits: int = RANGE_BITS
    version: int = PROTOCOL_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(self, "variant", Variant(self.variant))
        if not 1 <= self.range_bits <= 248:
            raise ValueError("range_bits must be in 1..248")

    @property
    def compliance(self) -> bool:
        return self.variant is Variant.COMPLIANCE

    @property
    def circuit_id(self) -> str:
        return f"shield_privacy_{self.variant.value}_r{self.range_bits}@{self.version}"

    @property
    def public_signal_names(self) -> Tuple[str, ...]:
        if self.compliance:
            return PUBLIC_SIGNAL_ORDER + (COMPLIANCE_SIGNAL,)
        return PUBLIC_SIGNAL_ORDER


BASE = CircuitConfig(Variant.BASE)
COMPLIANCE = CircuitConfig(Variant.COMPLIANCE)


@dataclass
class ShieldCircuit:
    config: CircuitConfig
    cs: ConstraintSystem
    poseidon_fingerprint: str
    r1cs_digest: str = ""

    @property
    def circuit_id(self) -> str:
        return self.config.circuit_id

    @property
    def num_public(self) -> int:
        return self.cs.num_public

    def assignment_inputs(
        self, witness: Mapping[str, int], public: Mapping[str, int]
    ) -> Dict[str, int]:
        # missing names are reported by the solver as MalformedWitness
        inputs: Dict[str, int] = {}
        for name in PRIVATE_INPUTS:
            if name in witness:
                inputs[name] = witness[name]
        for name in self.config.public_signal_names:
            if name in public:
                inputs[name] = public[name]
        return inputs

    def solve(self, witness: Mapping[str, int], public: Mapping[str, int]) -> List[int]:
        """Full wire assignment; does not check the constraints."""
        return self.cs.solve(self.assignment_inputs(witness, public))

    def check(self, values: List[int]) -> None:
        self.cs.check(values)

    def stats(self) -> Dict[str, object]:
        out: Dict[str, object] = dict(self.cs.stats())
        out["circuit_id"] = self.circuit_id
        out["digest"] = self.r1cs_digest
        return out


def _poseidon_fingerprint() -> str:
    return ",".join(params_for_width(t).fingerprint() for t in (2, 4))


def _build(config: CircuitConfig) -> ShieldCircuit:
    cs = ConstraintSystem(name=config.circuit_id)
    n = config.range_bits

    nullifier_hash = cs.public_input("nullifierHash")
    commitment = cs.public_input("commitment")
    recipient_hash = cs.public_input("recipientHash")
    threshold = cs.public_input(COMPLIANCE_SIGNAL) if config.compliance else None

    secret = cs.private_input("secret")
    nullifier = cs.private_input("nullifier")
    recipient = cs.private_input("recipient")
    amount = cs.private_input("amount")

    g.num2bits(cs, amount, n, "amount_range")

    c = g.poseidon(cs, [secret, nullifier, amount], "commitment_hash")
    g.assert_equal(cs, c, commitment, "commitment_binding")

    nh = g.poseidon(cs, [nullifier], "nullifier_hash")
    g.assert_equal(cs, nh, nullifier_hash, "nullifier_hash_binding")

    rh = g.poseidon(cs, [recipient], "recipient_hash")
    g.assert_equal(cs, rh, recipient_hash, "recipient_hash_binding")

    if threshold is not None:
        g.num2bits(cs, threshold, n, "threshold_range")
        below = g.less_than(cs, amount, threshold, n, "amount_lt_threshold")
        g.assert_equal(cs, below, 1, "amount_below_threshold")
        positive = g.less_than(cs, 0, amount, n, "amount_gt_zero")
        g.assert_equal(cs, positive, 1, "amount_positive")

    return ShieldCircuit(
        config=config,
        cs=cs,
        poseidon_fingerprint=_poseidon_fingerprint(),
        r1cs_digest=cs.digest(),
    )


@functools.lru_cache(maxsize=8)
def _cached(config: CircuitConfig, fingerprint: str) -> ShieldCircuit:
    return _build(config)


def build_circuit(config: Optional[CircuitConfig] = None) -> ShieldCircuit:
    """
    Compile the relation for `config` (default: base). Compilation is cached
    per (config, Poseidon parameter set); treat the result as read-only.
    """
    cfg = config or BASE
    return _cached(cfg, _poseidon_fingerprint())


__all__ = [
    "RANGE_BITS",
    "PUBLIC_SIGNAL_ORDER",
    "COMPLIANCE_SIGNAL",
    "PRIVATE_INPUTS",
    "Variant",
    "CircuitConfig",
    "BASE",
    "COMPLIANCE",
    "ShieldCircuit",
    "build_circuit",
]
