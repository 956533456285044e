"""
shield.zk.poseidon
==================

Poseidon hash over the BN254 scalar field, fixed-width construction.

`poseidon_hash(inputs)` hashes n inputs with a permutation of width t = n + 1:
the state starts as [0, x_1, …, x_n], is permuted once, and state[0] is the
digest. This is the construction the in-circuit gadget (`shield.zk.gadgets`)
reproduces constraint by constraint, so in-circuit and out-of-circuit hashes
always agree as long as both read the same registered parameter set.

Parameters are external and looked up by width (`bn254_t{t}`). A deterministic
default set is derived at import for every supported width; deployments that
must interoperate with another Poseidon instance load that instance's
constants with `load_params_json(...)` before any circuit is built.

Public API
----------
- PoseidonParams(t, R_F, R_P, alpha, mds, rc)
- register_params(name, params)
- load_params_json(path, name=None)
- get_params(name) / params_for_width(t)
- poseidon_permute(state, params)
- poseidon_hash(inputs)

JSON schema
-----------
{
  "t": 3, "R_F": 8, "R_P": 57, "alpha": 5,
  "mds": [[...t ints...], ...],
  "rc":  [[...t ints...], ... R_F+R_P rows ...]
}

Integers may be decimal strings, 0x-hex strings or JSON numbers, and must be
canonical (< R).
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .field import R, inv, require_canonical

# Partial rounds per width (t = 2..6); R_F is 8 throughout.
PARTIAL_ROUNDS: Dict[int, int] = {2: 56, 3: 57, 4: 56, 5: 60, 6: 60}
FULL_ROUNDS = 8
ALPHA = 5
MAX_INPUTS = max(PARTIAL_ROUNDS) - 1


def _pow5(x: int) -> int:
    x2 = x * x % R
    x4 = x2 * x2 % R
    return x * x4 % R


@dataclass(frozen=True)
class PoseidonParams:
    t: int  # state width
    R_F: int  # number of full rounds
    R_P: int  # number of partial rounds
    alpha: int  # S-box exponent
    mds: Tuple[Tuple[int, ...], ...]  # t x t
    rc: Tuple[Tuple[int, ...], ...]  # (R_F + R_P) x t

    def validate(self) -> None:
        if self.t < 2:
            raise ValueError("t must be >= 2")
        if self.R_F % 2 != 0:
            raise ValueError("R_F must be even (split half-before/after partial rounds)")
        if self.alpha != ALPHA:
            # the circuit gadget decomposes x^5 into three multiplication gates
            raise ValueError("only alpha=5 is supported")
        if len(self.mds) != self.t or any(len(row) != self.t for row in self.mds):
            raise ValueError("mds must be t x t")
        expected_rounds = self.R_F + self.R_P
        if len(self.rc) != expected_rounds or any(len(row) != self.t for row in self.rc):
            raise ValueError(f"rc must be (R_F+R_P) x t = {expected_rounds} x {self.t}")
        for row in (*self.mds, *self.rc):
            for v in row:
                if not 0 <= v < R:
                    raise ValueError("parameter values must be canonical field elements")

    def fingerprint(self) -> str:
        """Short digest identifying this exact parameter set."""
        h = hashlib.sha3_256()
        h.update(f"{self.t}/{self.R_F}/{self.R_P}/{self.alpha}".encode())
        for row in (*self.mds, *self.rc):
            for v in row:
                h.update(v.to_bytes(32, "big"))
        return h.hexdigest()[:16]


_PARAMS_REGISTRY: Dict[str, PoseidonParams] = {}
_LOCK = threading.RLock()


def register_params(name: str, params: PoseidonParams) -> None:
    """Register (or replace) a parameter set under `name`."""
    if not name or not isinstance(name, str):
        raise ValueError("name must be a non-empty string")
    params.validate()
    with _LOCK:
        _PARAMS_REGISTRY[name] = params


def get_params(name: str) -> PoseidonParams:
    with _LOCK:
        try:
            return _PARAMS_REGISTRY[name]
        except KeyError:
            raise KeyError(
                f"Poseidon params '{name}' are not registered. "
                "Load them with load_params_json(...) or register_params(...)."
            ) from None


def params_name(t: int) -> str:
    return f"bn254_t{t}"


def params_for_width(t: int) -> PoseidonParams:
    return get_params(params_name(t))


def _as_rows(raw: Any) -> Tuple[Tuple[int, ...], ...]:
    return tuple(tuple(require_canonical(v, "poseidon parameter") for v in row) for row in raw)


def load_params_json(path: str, name: Optional[str] = None) -> PoseidonParams:
    """
    Load a Poseidon params JSON file and register it.

    If `name` is None it is derived from the width (`bn254_t{t}`), which makes
    the loaded set the one used by `poseidon_hash` and the circuit gadgets.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    params = PoseidonParams(
        t=int(raw["t"]),
        R_F=int(raw["R_F"]),
        R_P=int(raw["R_P"]),
        alpha=int(raw.get("alpha", ALPHA)),
        mds=_as_rows(raw["mds"]),
        rc=_as_rows(raw["rc"]),
    )
    params.validate()
    register_params(name or params_name(params.t), params)
    return params


def _apply_mds(state: List[int], mds: Sequence[Sequence[int]]) -> List[int]:
    t = len(state)
    out = [0] * t
    for i in range(t):
        acc = 0
        row = mds[i]
        for j in range(t):
            acc += row[j] * state[j]
        out[i] = acc % R
    return out


def poseidon_permute(state: Sequence[int], params: PoseidonParams) -> List[int]:
    """
    Poseidon permutation.

    Round schedule, each round being (add constants, S-box, MDS):
      - R_F/2 full rounds (S-box on all t elements)
      - R_P partial rounds (S-box on state[0] only)
      - R_F/2 full rounds
    """
    t, R_F, R_P, mds, rc = params.t, params.R_F, params.R_P, params.mds, params.rc
    if len(state) != t:
        raise ValueError(f"state length {len(state)} != t={t}")

    x = [int(v) % R for v in state]
    half = R_F // 2
    r = 0
    for rnd in range(R_F + R_P):
        consts = rc[rnd]
        x = [(x[i] + consts[i]) % R for i in range(t)]
        if rnd < half or rnd >= half + R_P:
            x = [_pow5(v) for v in x]
        else:
            x[0] = _pow5(x[0])
        x = _apply_mds(x, mds)
        r += 1

    assert r == R_F + R_P, "round counter mismatch"
    return x


def poseidon_hash(inputs: Sequence[int]) -> int:
    """
    Fixed-width Poseidon: permute [0, *inputs] with t = len(inputs) + 1 and
    return state[0]. Inputs must be canonical field elements.
    """
    n = len(inputs)
    if not 1 <= n <= MAX_INPUTS:
        raise ValueError(f"poseidon_hash takes 1..{MAX_INPUTS} inputs, got {n}")
    state = [0] + [require_canonical(v, "poseidon input") for v in inputs]
    return poseidon_permute(state, params_for_width(n + 1))[0]


# ---------------------------
# Deterministic default parameters
# ---------------------------
# MDS is the Cauchy matrix M[i][j] = 1 / (x_i + y_j) with x_i = i and
# y_j = t + j; round constants are SHA3-256 over a domain-separated label,
# reduced mod R.


def derive_params(t: int) -> PoseidonParams:
    if t not in PARTIAL_ROUNDS:
        raise ValueError(f"no default round count for width t={t}")
    R_P = PARTIAL_ROUNDS[t]
    mds = tuple(tuple(inv(i + (t + j)) for j in range(t)) for i in range(t))
    rc = []
    for r in range(FULL_ROUNDS + R_P):
        row = []
        for i in range(t):
            h = hashlib.sha3_256(f"shield/poseidon/bn254/t={t}/r={r}/i={i}".encode()).digest()
            row.append(int.from_bytes(h, "big") % R)
        rc.append(tuple(row))
    return PoseidonParams(t=t, R_F=FULL_ROUNDS, R_P=R_P, alpha=ALPHA, mds=mds, rc=tuple(rc))


def _register_defaults() -> None:
    for t in PARTIAL_ROUNDS:
        name = params_name(t)
        if name not in _PARAMS_REGISTRY:
            register_params(name, derive_params(t))


_register_defaults()

# Optional override file, loaded after defaults so it wins.
_env_params = os.environ.get("SHIELD_POSEIDON_PARAMS")
if _env_params:
    for _p in _env_params.split(os.pathsep):
        if _p:
            load_params_json(_p)


__all__ = [
    "PARTIAL_ROUNDS",
    "FULL_ROUNDS",
    "MAX_INPUTS",
    "PoseidonParams",
    "register_params",
    "get_params",
    "params_name",
    "params_for_width",
    "load_params_json",
    "poseidon_permute",
    "poseidon_hash",
    "derive_params",
]
