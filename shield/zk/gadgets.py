"""
Constraint gadgets: multiplication, equality, booleanity, bit decomposition,
bounded comparison and the Poseidon permutation.

Each gadget appends constraints to a `ConstraintSystem` and returns the
linear combination holding its result. Labels are prefixed with the caller's
`name` so a failing witness points at the relation it broke.
"""

from __future__ import annotations

from typing import List, Sequence

from .field import R
from .poseidon import PoseidonParams, params_for_width
from .r1cs import ConstraintSystem, LinearCombination, Operand, as_lc


def mul(cs: ConstraintSystem, x: Operand, y: Operand, name: str) -> LinearCombination:
    xl, yl = as_lc(x), as_lc(y)
    out = cs.alloc(name, lambda s: s.value(xl) * s.value(yl))
    cs.enforce(xl, yl, out, name)
    return out


def assert_equal(cs: ConstraintSystem, x: Operand, y: Operand, label: str) -> None:
    cs.enforce(as_lc(x) - as_lc(y), 1, 0, label)


def assert_bool(cs: ConstraintSystem, bit: LinearCombination, label: str) -> None:
    # b · (b - 1) = 0
    cs.enforce(bit, bit - 1, 0, label)


def num2bits(cs: ConstraintSystem, x: Operand, n: int, name: str) -> List[LinearCombination]:
    """
    Decompose `x` into exactly `n` little-endian boolean wires and constrain
    Σ bits[i]·2^i == x. Fails for any x >= 2^n.
    """
    xl = as_lc(x)
    bits: List[LinearCombination] = []
    acc = LinearCombination()
    for i in range(n):
        b = cs.alloc(f"{name}.bit[{i}]", lambda s, _i=i: (s.value(xl) >> _i) & 1)
        assert_bool(cs, b, f"{name}.bool[{i}]")
        bits.append(b)
        acc = acc + b * (1 << i)
    assert_equal(cs, acc, xl, f"{name}.sum")
    return bits


def less_than(cs: ConstraintSystem, a: Operand, b: Operand, n: int, name: str) -> LinearCombination:
    """
    1 if a < b else 0, for a and b already known to fit in `n` bits.

    a + 2^n - b lies in [1, 2^(n+1)); its bit n is set exactly when a >= b.
    """
    if n + 1 >= R.bit_length():
        raise ValueError("comparison width too large for the field")
    diff = as_lc(a) + (1 << n) - as_lc(b)
    bits = num2bits(cs, diff, n + 1, f"{name}.diff")
    return 1 - bits[n]


def _sbox(cs: ConstraintSystem, x: LinearCombination, name: str) -> LinearCombination:
    x2 = mul(cs, x, x, f"{name}.x2")
    x4 = mul(cs, x2, x2, f"{name}.x4")
    return mul(cs, x4, x, f"{name}.x5")


def _mix(state: Sequence[LinearCombination], mds: Sequence[Sequence[int]]) -> List[LinearCombination]:
    t = len(state)
    out = []
    for i in range(t):
        acc = LinearCombination()
        for j in range(t):
            acc = acc + state[j] * mds[i][j]
        out.append(acc)
    return out


def poseidon_permutation(
    cs: ConstraintSystem,
    state: Sequence[LinearCombination],
    params: PoseidonParams,
    name: str,
) -> List[LinearCombination]:
    """In-circuit mirror of `poseidon.poseidon_permute` (three gates per S-box)."""
    t = params.t
    if len(state) != t:
        raise ValueError(f"state length {len(state)} != t={t}")
    half = params.R_F // 2
    x = list(state)
    for rnd in range(params.R_F + params.R_P):
        consts = params.rc[rnd]
        x = [x[i] + consts[i] for i in range(t)]
        if rnd < half or rnd >= half + params.R_P:
            x = [_sbox(cs, x[i], f"{name}.r{rnd}.s{i}") for i in range(t)]
        else:
            x[0] = _sbox(cs, x[0], f"{name}.r{rnd}.s0")
        x = _mix(x, params.mds)
    return x


def poseidon(cs: ConstraintSystem, inputs: Sequence[Operand], name: str) -> LinearCombination:
    """Fixed-width Poseidon over `inputs`, matching `poseidon.poseidon_hash`."""
    params = params_for_width(len(inputs) + 1)
    state = [LinearCombination()] + [as_lc(v) for v in inputs]
    return poseidon_permutation(cs, state, params, name)[0]


__all__ = [
    "mul",
    "assert_equal",
    "assert_bool",
    "num2bits",
    "less_than",
    "poseidon_permutation",
    "poseidon",
]
