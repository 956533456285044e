"""
Radix-2 evaluation domain over Fr used by the QAP reduction.

The domain is the multiplicative subgroup H = {ω^0, …, ω^(n-1)} of size n = 2^k.
Quotients are computed on the coset q·H where q is a primitive 2n-th root of
unity; there q^n = -1, so the vanishing polynomial Z(X) = X^n - 1 takes the
constant value -2 on every coset point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .field import R, batch_inverse, inv, root_of_unity

# (-2)^-1 mod R
_INV_MINUS_TWO = (R - 1) // 2


def _fft(values: Sequence[int], root: int) -> List[int]:
    n = len(values)
    if n == 1:
        return [values[0] % R]
    root_sq = root * root % R
    even = _fft(values[0::2], root_sq)
    odd = _fft(values[1::2], root_sq)
    half = n // 2
    out = [0] * n
    w = 1
    for i in range(half):
        t = w * odd[i] % R
        out[i] = (even[i] + t) % R
        out[i + half] = (even[i] - t) % R
        w = w * root % R
    return out


def _powers(base: int, count: int) -> List[int]:
    out = [1] * count
    for i in range(1, count):
        out[i] = out[i - 1] * base % R
    return out


@dataclass(frozen=True)
class EvaluationDomain:
    size: int
    omega: int
    omega_inv: int
    size_inv: int
    coset: int
    coset_inv: int

    @classmethod
    def for_size(cls, min_size: int) -> "EvaluationDomain":
        """Smallest power-of-two domain holding at least `min_size` points."""
        n = 1 << max(0, (max(1, min_size) - 1).bit_length())
        omega = root_of_unity(n)
        coset = root_of_unity(2 * n)
        return cls(
            size=n,
            omega=omega,
            omega_inv=inv(omega),
            size_inv=inv(n),
            coset=coset,
            coset_inv=inv(coset),
        )

    def elements(self) -> List[int]:
        return _powers(self.omega, self.size)

    def _pad(self, values: Sequence[int]) -> List[int]:
        if len(values) > self.size:
            raise ValueError(f"{len(values)} values do not fit a domain of size {self.size}")
        return [v % R for v in values] + [0] * (self.size - len(values))

    def fft(self, coeffs: Sequence[int]) -> List[int]:
        """Coefficients -> evaluations on H."""
        return _fft(self._pad(coeffs), self.omega)

    def ifft(self, evals: Sequence[int]) -> List[int]:
        """Evaluations on H -> coefficients."""
        out = _fft(self._pad(evals), self.omega_inv)
        return [v * self.size_inv % R for v in out]

    def coset_fft(self, coeffs: Sequence[int]) -> List[int]:
        """Coefficients -> evaluations on q·H."""
        shifted = [c * k % R for c, k in zip(self._pad(coeffs), _powers(self.coset, self.size))]
        return _fft(shifted, self.omega)

    def coset_ifft(self, evals: Sequence[int]) -> List[int]:
        """Evaluations on q·H -> coefficients."""
        coeffs = self.ifft(evals)
        return [c * k % R for c, k in zip(coeffs, _powers(self.coset_inv, self.size))]

    def vanishing_at(self, x: int) -> int:
        """Z(x) = x^n - 1."""
        return (pow(x, self.size, R) - 1) % R

    def divide_by_vanishing_on_coset(self, evals: Sequence[int]) -> List[int]:
        """Pointwise division by Z on the coset, where Z == -2."""
        return [v * _INV_MINUS_TWO % R for v in evals]

    def lagrange_at(self, tau: int) -> List[int]:
        """
        All Lagrange basis polynomials of H evaluated at `tau`:

            L_j(tau) = (ω^j / n) · (tau^n - 1) / (tau - ω^j)

        `tau` must not lie in H.
        """
        z = self.vanishing_at(tau)
        if z == 0:
            raise ValueError("tau lies inside the evaluation domain")
        elems = self.elements()
        denoms = batch_inverse([(tau - w) % R for w in elems])
        scale = z * self.size_inv % R
        return [scale * w % R * d % R for w, d in zip(elems, denoms)]


__all__ = ["EvaluationDomain"]
