"""
shield.zk.pairing_bn254
=======================

Thin BN254 (altbn128) Ate pairing wrapper over `py_ecc.optimized_bn128`.

Public API
----------
- pair(P, Q) -> GTElement
- product_of_pairings(pairs) -> GTElement
- check_pairing_product(pairs) -> bool
- is_on_curve_g1(P), is_on_curve_g2(Q), is_in_g2_subgroup(Q)
- normalize_g1(P) / normalize_g2(Q)  (to affine integer limbs)
- g1_from_affine(x, y) / g2_from_affine((x0, x1), (y0, y1))
- g1_generator(), g2_generator(), curve_order(), field_modulus()

Notes
-----
- Point ordering follows the convention e(P, Q) with P in G1, Q in G2; the
  underlying py_ecc call expects (Q, P).
- A product of pairings runs one Miller loop per pair and a single final
  exponentiation.
- Inputs are validated (on-curve, and subgroup membership for G2) before
  pairing unless `validate=False`. G1 has cofactor 1, so on-curve suffices.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Tuple

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    G1 as _G1,
    G2 as _G2,
    Z1,
    Z2,
    b as _B,
    b2 as _B2,
    curve_order as _Q,
    field_modulus as _P,
    final_exponentiate as _final_exponentiate,
    is_inf as _is_inf,
    is_on_curve as _is_on_curve,
    multiply as _multiply,
    normalize as _normalize,
    pairing as _pairing,
)

BACKEND_NAME = "py_ecc.optimized_bn128"

# Opaque projective tuples understood by py_ecc.
G1Point = Any
G2Point = Any
GTElement = FQ12

__all__ = [
    "pair",
    "product_of_pairings",
    "check_pairing_product",
    "is_inf",
    "is_on_curve_g1",
    "is_on_curve_g2",
    "is_in_g2_subgroup",
    "normalize_g1",
    "normalize_g2",
    "g1_from_affine",
    "g2_from_affine",
    "g1_generator",
    "g2_generator",
    "g1_zero",
    "g2_zero",
    "curve_order",
    "field_modulus",
    "BACKEND_NAME",
]


def curve_order() -> int:
    """Return the BN254 subgroup order (the scalar field modulus R)."""
    return int(_Q)


def field_modulus() -> int:
    """Return the base field modulus p."""
    return int(_P)


def g1_generator() -> G1Point:
    return _G1


def g2_generator() -> G2Point:
    return _G2


def g1_zero() -> G1Point:
    return Z1


def g2_zero() -> G2Point:
    return Z2


def is_inf(P: Any) -> bool:
    return P is None or bool(_is_inf(P))


def is_on_curve_g1(P: G1Point) -> bool:
    """True if P is on G1 or is the point at infinity."""
    return is_inf(P) or bool(_is_on_curve(P, _B))


def is_on_curve_g2(Q: G2Point) -> bool:
    """True if Q is on the twist curve or is the point at infinity."""
    return is_inf(Q) or bool(_is_on_curve(Q, _B2))


def is_in_g2_subgroup(Q: G2Point) -> bool:
    """On-curve and of order dividing R (the twist has a large cofactor)."""
    if is_inf(Q):
        return True
    return is_on_curve_g2(Q) and is_inf(_multiply(Q, _Q))


def _check_coord(v: int) -> int:
    v = int(v)
    if not 0 <= v < _P:
        raise ValueError("coordinate is not a canonical base-field element")
    return v


def g1_from_affine(x: int, y: int) -> G1Point:
    """Build a G1 point; (0, 0) encodes infinity. Raises ValueError off-curve."""
    xi, yi = _check_coord(x), _check_coord(y)
    if xi == 0 and yi == 0:
        return Z1
    P = (FQ(xi), FQ(yi), FQ.one())
    if not _is_on_curve(P, _B):
        raise ValueError("G1 point is not on curve")
    return P


def g2_from_affine(
    x: Tuple[int, int], y: Tuple[int, int], *, subgroup_check: bool = True
) -> G2Point:
    """
    Build a G2 point from Fq2 limbs [c0, c1] (value = c0 + c1·i); all-zero
    encodes infinity. Raises ValueError off-curve or (unless disabled for
    trusted key material) outside the subgroup.
    """
    x0, x1 = _check_coord(x[0]), _check_coord(x[1])
    y0, y1 = _check_coord(y[0]), _check_coord(y[1])
    if x0 == 0 and x1 == 0 and y0 == 0 and y1 == 0:
        return Z2
    Q = (FQ2([x0, x1]), FQ2([y0, y1]), FQ2.one())
    if not _is_on_curve(Q, _B2):
        raise ValueError("G2 point is not on curve")
    if subgroup_check and not is_inf(_multiply(Q, _Q)):
        raise ValueError("G2 point is not in the prime-order subgroup")
    return Q


def normalize_g1(P: G1Point) -> Optional[Tuple[int, int]]:
    """Affine (x, y) integers, or None for infinity."""
    if is_inf(P):
        return None
    ax, ay = _normalize(P)
    return int(ax.n), int(ay.n)


def normalize_g2(Q: G2Point) -> Optional[Tuple[Tuple[int, int], Tuple[int, int]]]:
    """Affine ((x_c0, x_c1), (y_c0, y_c1)) integers, or None for infinity."""
    if is_inf(Q):
        return None
    ax, ay = _normalize(Q)
    xc0, xc1 = int(ax.coeffs[0]), int(ax.coeffs[1])
    yc0, yc1 = int(ay.coeffs[0]), int(ay.coeffs[1])
    return (xc0, xc1), (yc0, yc1)


def _validate(P: G1Point, Q: G2Point) -> None:
    if not is_on_curve_g1(P):
        raise ValueError("G1 point is not on curve")
    if not is_in_g2_subgroup(Q):
        raise ValueError("G2 point is not on curve or not in the subgroup")


def _miller(P: G1Point, Q: G2Point) -> GTElement:
    return _pairing(Q, P, final_exponentiate=False)


def pair(P: G1Point, Q: G2Point, *, validate: bool = True) -> GTElement:
    """Compute e(P, Q). Pairings involving infinity are the GT identity."""
    if validate:
        _validate(P, Q)
    if is_inf(P) or is_inf(Q):
        return FQ12.one()
    return _pairing(Q, P)


def product_of_pairings(
    pairs: Iterable[Tuple[G1Point, G2Point]], *, validate: bool = True
) -> GTElement:
    """Compute ∏ e(P_i, Q_i) with a single final exponentiation."""
    acc = FQ12.one()
    for P, Q in pairs:
        if validate:
            _validate(P, Q)
        if is_inf(P) or is_inf(Q):
            continue
        acc = acc * _miller(P, Q)
    return _final_exponentiate(acc)


def check_pairing_product(
    pairs: Iterable[Tuple[G1Point, G2Point]], *, validate: bool = True
) -> bool:
    """True iff ∏ e(P_i, Q_i) == 1 in GT."""
    return product_of_pairings(pairs, validate=validate) == FQ12.one()
