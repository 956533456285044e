"""
Group arithmetic helpers for the setup and the prover.

- `FixedBaseTable`: windowed precomputation for many multiplications of one
  base (the trusted setup multiplies the generators by thousands of scalars).
- `msm`: Pippenger bucket multi-scalar multiplication (the prover's inner
  products of witness values against proving-key queries).

Works for G1 and G2 alike: the caller passes the group's zero point.
"""

from __future__ import annotations

from typing import Any, List, Sequence

from py_ecc.optimized_bn128 import add, double, multiply, neg

from .field import R
from .pairing_bn254 import is_inf

Point = Any

_SCALAR_BITS = R.bit_length()


class FixedBaseTable:
    """table[j][d] = d · 2^(window·j) · base, for every window j and digit d."""

    def __init__(self, base: Point, zero: Point, window: int = 8) -> None:
        self.window = window
        self.zero = zero
        self.mask = (1 << window) - 1
        self.windows = (_SCALAR_BITS + window - 1) // window
        table: List[List[Point]] = []
        b = base
        for _ in range(self.windows):
            row = [zero, b]
            for _ in range(2, 1 << window):
                row.append(add(row[-1], b))
            table.append(row)
            # next window base: 2^window · b
            for _ in range(window):
                b = double(b)
        self.table = table

    def mul(self, scalar: int) -> Point:
        k = scalar % R
        acc = self.zero
        j = 0
        while k:
            d = k & self.mask
            if d:
                acc = add(acc, self.table[j][d])
            k >>= self.window
            j += 1
        return acc

    def batch_mul(self, scalars: Sequence[int]) -> List[Point]:
        return [self.mul(s) for s in scalars]


def _window_size(n: int) -> int:
    if n < 32:
        return 3
    return max(4, min(12, n.bit_length() - 2))


def msm(points: Sequence[Point], scalars: Sequence[int], zero: Point) -> Point:
    """Σ scalars[i] · points[i] via Pippenger's bucket method."""
    if len(points) != len(scalars):
        raise ValueError("msm: points and scalars differ in length")
    pairs = []
    for p, s in zip(points, scalars):
        s %= R
        if s and not is_inf(p):
            pairs.append((p, s))
    if not pairs:
        return zero
    if len(pairs) == 1:
        p, s = pairs[0]
        return multiply(p, s)

    c = _window_size(len(pairs))
    mask = (1 << c) - 1
    num_windows = (_SCALAR_BITS + c - 1) // c

    acc = zero
    for w in reversed(range(num_windows)):
        if not is_inf(acc):
            for _ in range(c):
                acc = double(acc)
        shift = w * c
        buckets: List[Any] = [None] * mask
        for p, s in pairs:
            d = (s >> shift) & mask
            if d:
                cur = buckets[d - 1]
                buckets[d - 1] = p if cur is None else add(cur, p)
        running = None
        window_sum = None
        for b in reversed(buckets):
            if b is not None:
                running = b if running is None else add(running, b)
            if running is not None:
                window_sum = running if window_sum is None else add(window_sum, running)
        if window_sum is not None:
            acc = add(acc, window_sum)
    return acc


def negate(p: Point) -> Point:
    return neg(p)


__all__ = ["FixedBaseTable", "msm", "negate"]
