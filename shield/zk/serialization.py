"""
shield.zk.serialization
=======================

Wire and file formats for Groth16 artifacts.

- snarkjs JSON: G1 points as [x, y, "1"], G2 points as
  [[x_c0, x_c1], [y_c0, y_c1], ["1", "0"]], all decimal strings. The point at
  infinity is ["0", "1", "0"] / [["0","0"], ["1","0"], ["0","0"]], as snarkjs
  writes it.
- Solidity calldata: (a[2], b[2][2], c[2], input[n]) where every G2
  coordinate is emitted as [c1, c0] (the EVM precompile expects the
  imaginary limb first).
- Proving-key files: msgspec-encoded JSON, same point layout.

Public API
----------
- g1_to_json(P) / g2_to_json(Q)
- proof_to_json(proof) / vk_to_json(vk)
- format_proof_for_solidity(proof_json, public_signals) -> dict
- proving_key_to_json(pk) / proving_key_from_json(obj)
- save_proving_key(pk, path) / load_proving_key(path)
- save_json(path, obj) / load_json(path)
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Union

import msgspec

from .groth16_bn254 import Proof, VerifyingKey, _g1, _to_int
from .groth16_prover import ProvingKey
from .pairing_bn254 import G1Point, G2Point, g2_from_affine, normalize_g1, normalize_g2

PathLike = Union[str, "os.PathLike[str]"]

G1_INFINITY = ["0", "1", "0"]
G2_INFINITY = [["0", "0"], ["1", "0"], ["0", "0"]]
PK_FORMAT = "shield-groth16-pk/1"


def g1_to_json(P: G1Point) -> List[str]:
    aff = normalize_g1(P)
    if aff is None:
        return list(G1_INFINITY)
    return [str(aff[0]), str(aff[1]), "1"]


def g2_to_json(Q: G2Point) -> List[List[str]]:
    aff = normalize_g2(Q)
    if aff is None:
        return [list(row) for row in G2_INFINITY]
    (x0, x1), (y0, y1) = aff
    return [[str(x0), str(x1)], [str(y0), str(y1)], ["1", "0"]]


def proof_to_json(proof: Proof) -> Dict[str, Any]:
    return {
        "pi_a": g1_to_json(proof.A),
        "pi_b": g2_to_json(proof.B),
        "pi_c": g1_to_json(proof.C),
        "protocol": "groth16",
        "curve": "bn128",
    }


def vk_to_json(vk: VerifyingKey) -> Dict[str, Any]:
    return {
        "protocol": "groth16",
        "curve": "bn128",
        "nPublic": vk.n_public,
        "vk_alpha_1": g1_to_json(vk.alpha1),
        "vk_beta_2": g2_to_json(vk.beta2),
        "vk_gamma_2": g2_to_json(vk.gamma2),
        "vk_delta_2": g2_to_json(vk.delta2),
        "IC": [g1_to_json(p) for p in vk.IC],
    }


def format_proof_for_solidity(
    proof_json: Mapping[str, Any], public_signals: Sequence[Any]
) -> Dict[str, Any]:
    """
    Calldata for a generated `verifyProof(a, b, c, input)`.

    Coordinates are decimal strings; the G2 limbs of `b` are swapped.
    """
    pi_a, pi_b, pi_c = proof_json["pi_a"], proof_json["pi_b"], proof_json["pi_c"]
    return {
        "a": [str(_to_int(pi_a[0])), str(_to_int(pi_a[1]))],
        "b": [
            [str(_to_int(pi_b[0][1])), str(_to_int(pi_b[0][0]))],
            [str(_to_int(pi_b[1][1])), str(_to_int(pi_b[1][0]))],
        ],
        "c": [str(_to_int(pi_c[0])), str(_to_int(pi_c[1]))],
        "publicSignals": [str(_to_int(v)) for v in public_signals],
    }


# ---------------------------
# Proving keys
# ---------------------------


class ProvingKeyFile(msgspec.Struct, frozen=True):
    circuit_id: str
    r1cs_digest: str
    domain_size: int
    num_public: int
    alpha_g1: List[str]
    beta_g1: List[str]
    delta_g1: List[str]
    beta_g2: List[List[str]]
    delta_g2: List[List[str]]
    a_query: List[List[str]]
    b_g1_query: List[List[str]]
    b_g2_query: List[List[List[str]]]
    l_query: List[List[str]]
    h_query: List[List[str]]
    format: str = PK_FORMAT


def _g2_trusted(coords: Sequence[Sequence[Any]]) -> G2Point:
    # on-curve only: a subgroup check per query point would dominate load time
    xx, yy = coords[0], coords[1]
    if len(coords) == 3 and [_to_int(v) for v in coords[2]] == [0, 0]:
        return g2_from_affine((0, 0), (0, 0))
    return g2_from_affine(
        (_to_int(xx[0]), _to_int(xx[1])),
        (_to_int(yy[0]), _to_int(yy[1])),
        subgroup_check=False,
    )


def proving_key_to_json(pk: ProvingKey) -> ProvingKeyFile:
    return ProvingKeyFile(
        circuit_id=pk.circuit_id,
        r1cs_digest=pk.r1cs_digest,
        domain_size=pk.domain_size,
        num_public=pk.num_public,
        alpha_g1=g1_to_json(pk.alpha_g1),
        beta_g1=g1_to_json(pk.beta_g1),
        delta_g1=g1_to_json(pk.delta_g1),
        beta_g2=g2_to_json(pk.beta_g2),
        delta_g2=g2_to_json(pk.delta_g2),
        a_query=[g1_to_json(p) for p in pk.a_query],
        b_g1_query=[g1_to_json(p) for p in pk.b_g1_query],
        b_g2_query=[g2_to_json(q) for q in pk.b_g2_query],
        l_query=[g1_to_json(p) for p in pk.l_query],
        h_query=[g1_to_json(p) for p in pk.h_query],
    )


def proving_key_from_json(obj: Union[ProvingKeyFile, Mapping[str, Any]]) -> ProvingKey:
    f = obj if isinstance(obj, ProvingKeyFile) else msgspec.convert(obj, ProvingKeyFile)
    if f.format != PK_FORMAT:
        raise ValueError(f"unsupported proving key format {f.format!r}")
    return ProvingKey(
        circuit_id=f.circuit_id,
        r1cs_digest=f.r1cs_digest,
        domain_size=f.domain_size,
        num_public=f.num_public,
        alpha_g1=_g1(f.alpha_g1),
        beta_g1=_g1(f.beta_g1),
        delta_g1=_g1(f.delta_g1),
        beta_g2=_g2_trusted(f.beta_g2),
        delta_g2=_g2_trusted(f.delta_g2),
        a_query=[_g1(p) for p in f.a_query],
        b_g1_query=[_g1(p) for p in f.b_g1_query],
        b_g2_query=[_g2_trusted(q) for q in f.b_g2_query],
        l_query=[_g1(p) for p in f.l_query],
        h_query=[_g1(p) for p in f.h_query],
    )


# ---------------------------
# Files
# ---------------------------


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=path.name, dir=str(path.parent))
    try:
        with os.fdopen(tmp_fd, "wb") as tmpf:
            tmpf.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def save_json(path: PathLike, obj: Any) -> Path:
    p = Path(path)
    data = json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    _write_atomic(p, data.encode("utf-8"))
    return p


def load_json(path: PathLike) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def save_proving_key(pk: ProvingKey, path: PathLike) -> Path:
    p = Path(path)
    _write_atomic(p, msgspec.json.encode(proving_key_to_json(pk)))
    return p


def load_proving_key(path: PathLike) -> ProvingKey:
    raw = Path(path).read_bytes()
    return proving_key_from_json(msgspec.json.decode(raw, type=ProvingKeyFile))


__all__ = [
    "G1_INFINITY",
    "G2_INFINITY",
    "g1_to_json",
    "g2_to_json",
    "proof_to_json",
    "vk_to_json",
    "format_proof_for_solidity",
    "ProvingKeyFile",
    "proving_key_to_json",
    "proving_key_from_json",
    "save_json",
    "load_json",
    "save_proving_key",
    "load_proving_key",
]
