"""
shield.zk.groth16_bn254
=======================

Groth16 verifier for BN254 (altbn128), compatible with the `snarkjs` JSON
layout.

Verification equation
---------------------
    e(A, B) == e(alpha1, beta2) * e(VK_x, gamma2) * e(C, delta2)

implemented as a product check in GT:
    e(A, B) * e(-alpha1, beta2) * e(-VK_x, gamma2) * e(-C, delta2) == 1

JSON compatibility (snarkjs)
----------------------------
- Verifying key:
  {
    "protocol": "groth16", "curve": "bn128", "nPublic": n,
    "vk_alpha_1": [ax, ay, "1"],
    "vk_beta_2":  [[bx0, bx1], [by0, by1], ["1", "0"]],
    "vk_gamma_2": [[gx0, gx1], [gy0, gy1], ["1", "0"]],
    "vk_delta_2": [[dx0, dx1], [dy0, dy1], ["1", "0"]],
    "IC": [[ic0x, ic0y, "1"], ...]       # length = 1 + n
  }
- Proof:
  { "pi_a": [ax, ay, "1"], "pi_b": [[bx0, bx1], [by0, by1], ["1", "0"]], "pi_c": [cx, cy, "1"] }

Coordinates are decimal strings (or numbers). G2 elements are Fq2 encoded as
[c0, c1] for c0 + c1·i. The trailing projective coordinate is optional; when
present it must be 1, or 0 for the point at infinity.

Public API
----------
- verify_groth16(vk_json, proof_json, public_inputs) -> bool
- verify_prepared(vk, proof, public_inputs) -> bool
- load_vk(vk_json) -> VerifyingKey
- load_proof(proof_json) -> Proof
- parse_public_inputs(values) -> list[int]

Verification is a pure decision procedure: malformed encodings, points off
the curve or outside the subgroup, a public-input count that does not match
the key, and public inputs that are not canonical field elements (>= R) all
yield False. Public inputs are never reduced modulo R; accepting x + R in
place of x would make the same proof valid for two distinct signal vectors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence, Tuple, Union

from py_ecc.optimized_bn128 import add as _add
from py_ecc.optimized_bn128 import multiply as _mul
from py_ecc.optimized_bn128 import neg as _neg

from .field import R, parse_int
from .pairing_bn254 import G1Point, G2Point, check_pairing_product, g1_from_affine, g2_from_affine

log = logging.getLogger("shield.zk.groth16")

Number = Union[int, str]


def _to_int(z: Number) -> int:
    if isinstance(z, bool):
        raise ValueError("booleans are not coordinates")
    if isinstance(z, int):
        return z
    s = str(z).strip().lower()
    if s.startswith("0x"):
        return int(s, 16)
    return int(s)


def _g1(coords: Sequence[Number]) -> G1Point:
    if len(coords) not in (2, 3):
        raise ValueError("G1 point must have 2 or 3 coordinates")
    if len(coords) == 3:
        z = _to_int(coords[2])
        if z == 0:
            return g1_from_affine(0, 0)
        if z != 1:
            raise ValueError("G1 point is not normalized")
    return g1_from_affine(_to_int(coords[0]), _to_int(coords[1]))


def _g2(coords: Sequence[Sequence[Number]]) -> G2Point:
    if len(coords) not in (2, 3):
        raise ValueError("G2 point must have 2 or 3 coordinates")
    xx, yy = coords[0], coords[1]
    if len(xx) != 2 or len(yy) != 2:
        raise ValueError("G2 coordinates must be [c0, c1] pairs")
    if len(coords) == 3:
        z0, z1 = (_to_int(v) for v in coords[2])
        if (z0, z1) == (0, 0):
            return g2_from_affine((0, 0), (0, 0))
        if (z0, z1) != (1, 0):
            raise ValueError("G2 point is not normalized")
    return g2_from_affine(
        (_to_int(xx[0]), _to_int(xx[1])), (_to_int(yy[0]), _to_int(yy[1]))
    )


@dataclass(frozen=True)
class VerifyingKey:
    alpha1: G1Point
    beta2: G2Point
    gamma2: G2Point
    delta2: G2Point
    IC: Tuple[G1Point, ...]  # [IC0, IC1, ..., ICn]

    @property
    def n_public(self) -> int:
        return len(self.IC) - 1


@dataclass(frozen=True)
class Proof:
    A: G1Point
    B: G2Point
    C: G1Point


def load_vk(vk_json: Mapping[str, Any]) -> VerifyingKey:
    """Parse a snarkjs-style verifying key. Raises ValueError/KeyError on bad input."""
    if vk_json.get("protocol", "groth16") != "groth16":
        raise ValueError("not a groth16 verifying key")
    IC = vk_json["IC"]
    if not IC:
        raise ValueError("IC must not be empty")
    n_public = vk_json.get("nPublic")
    if n_public is not None and int(n_public) != len(IC) - 1:
        raise ValueError("nPublic does not match IC length")
    return VerifyingKey(
        alpha1=_g1(vk_json["vk_alpha_1"]),
        beta2=_g2(vk_json["vk_beta_2"]),
        gamma2=_g2(vk_json["vk_gamma_2"]),
        delta2=_g2(vk_json["vk_delta_2"]),
        IC=tuple(_g1(p) for p in IC),
    )


def load_proof(proof_json: Mapping[str, Any]) -> Proof:
    """Parse a snarkjs-style proof. Raises ValueError/KeyError on bad input."""
    if proof_json.get("protocol", "groth16") != "groth16":
        raise ValueError("not a groth16 proof")
    return Proof(
        A=_g1(proof_json["pi_a"]),
        B=_g2(proof_json["pi_b"]),
        C=_g1(proof_json["pi_c"]),
    )


def parse_public_inputs(values: Sequence[Number]) -> List[int]:
    """Strictly parse public inputs: each must be an integer in [0, R)."""
    out = []
    for v in values:
        x = parse_int(v)
        if not 0 <= x < R:
            raise ValueError("public input is not a canonical field element")
        out.append(x)
    return out


def _vk_x(IC: Sequence[G1Point], inputs: Sequence[int]) -> G1Point:
    """VK_x = IC[0] + sum_i inputs[i] * IC[i+1] in G1."""
    if len(IC) != len(inputs) + 1:
        raise ValueError(f"IC length {len(IC)} != 1 + len(inputs) {len(inputs)}")
    acc = IC[0]
    for i, s in enumerate(inputs):
        if s != 0:
            acc = _add(acc, _mul(IC[i + 1], s))
    return acc


def verify_prepared(vk: VerifyingKey, proof: Proof, public_inputs: Sequence[int]) -> bool:
    """Pairing check over already-parsed key, proof and canonical inputs."""
    if len(public_inputs) != vk.n_public:
        return False
    vkx = _vk_x(vk.IC, public_inputs)
    pairs = [
        (proof.A, proof.B),
        (_neg(vk.alpha1), vk.beta2),
        (_neg(vkx), vk.gamma2),
        (_neg(proof.C), vk.delta2),
    ]
    # points were validated while parsing
    return check_pairing_product(pairs, validate=False)


def verify_groth16(
    vk_json: Mapping[str, Any],
    proof_json: Mapping[str, Any],
    public_inputs: Sequence[Number],
) -> bool:
    """
    Verify a Groth16 proof given snarkjs-style VK/proof JSON and public inputs.

    Returns True on success, False otherwise (no exceptions for malformed input).
    """
    try:
        vk = load_vk(vk_json)
        pf = load_proof(proof_json)
        inputs = parse_public_inputs(public_inputs)
    except Exception as e:  # noqa: BLE001
        log.debug("groth16 input rejected: %s", e)
        return False
    try:
        return verify_prepared(vk, pf, inputs)
    except Exception as e:  # noqa: BLE001
        log.debug("groth16 pairing check errored: %s", e)
        return False


verify = verify_groth16

__all__ = [
    "VerifyingKey",
    "Proof",
    "load_vk",
    "load_proof",
    "parse_public_inputs",
    "verify_prepared",
    "verify_groth16",
    "verify",
]
