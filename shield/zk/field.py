"""
BN254 scalar field Fr, the field every witness value, commitment and public
signal lives in.

It is **not** constant-time; witness values only pass through it inside one
generation call and are never persisted.

Features:
- Canonical modulus `R` and 32-byte big-endian (de)serialization.
- Strict parsing: values outside [0, R) are rejected, never reduced, so no two
  encodings name the same element.
- Basic ring ops on a small immutable `Fr` wrapper: +, -, *, /, pow, neg.
- Inversion via Fermat's little theorem, Legendre symbol, Tonelli–Shanks sqrt.
- Integer fast paths (`batch_inverse`, `root_of_unity`) for the prover.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from shield.errors import FieldError

# BN254 / alt_bn128 scalar field order (the G1/G2 subgroup order).
R: int = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FR_BYTE_LEN = 32

# R - 1 = 2^28 * odd; 5 generates the multiplicative group.
TWO_ADICITY = 28
MULTIPLICATIVE_GENERATOR = 5


def _to_int(x: Union[int, "Fr"]) -> int:
    return x.n if isinstance(x, Fr) else int(x)


def _red(x: int) -> int:
    return x % R


def parse_int(value: Union[int, str, bytes, "Fr"]) -> int:
    """
    Parse an int, a decimal / 0x-hex string, or big-endian bytes into an integer
    without reducing it. Raises FieldError on garbage.
    """
    if isinstance(value, bool):
        raise FieldError("booleans are not field elements")
    if isinstance(value, Fr):
        return value.n
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) > FR_BYTE_LEN:
            raise FieldError("too many bytes for a field element", ctx={"len": len(value)})
        return int.from_bytes(bytes(value), "big")
    if isinstance(value, str):
        s = value.strip().lower()
        try:
            if s.startswith("0x"):
                return int(s[2:] or "0", 16)
            return int(s, 10)
        except ValueError as e:
            raise FieldError("unparseable field element", ctx={"value": value[:80]}) from e
    raise FieldError("unsupported field element type", ctx={"type": type(value).__name__})


def is_canonical(x: int) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and 0 <= x < R


def require_canonical(value: Union[int, str, bytes, "Fr"], name: str = "value") -> int:
    """Parse `value` and insist it already lies in [0, R)."""
    x = parse_int(value)
    if not 0 <= x < R:
        raise FieldError(f"{name} is not a canonical field element", ctx={"name": name})
    return x


@dataclass(frozen=True)
class Fr:
    """
    Small immutable wrapper for elements of the BN254 scalar field.

        a = Fr.from_int(5)
        b = a * 7 + 1
    """

    n: int  # canonical representative in [0, R)

    @staticmethod
    def from_int(x: int) -> "Fr":
        return Fr(_red(x))

    @staticmethod
    def from_canonical(value: Union[int, str, bytes]) -> "Fr":
        """Strict constructor: rejects anything outside [0, R)."""
        return Fr(require_canonical(value))

    @staticmethod
    def from_bytes(b: bytes, *, strict_len: bool = False) -> "Fr":
        if strict_len and len(b) != FR_BYTE_LEN:
            raise FieldError(f"Fr.from_bytes: expected {FR_BYTE_LEN} bytes, got {len(b)}")
        return Fr(require_canonical(bytes(b)))

    @staticmethod
    def from_hex(s: str) -> "Fr":
        s = s.lower()
        if not s.startswith("0x"):
            s = "0x" + s
        if len(s) > 2 + FR_BYTE_LEN * 2:
            raise FieldError("Fr.from_hex: too many hex chars for field element")
        return Fr(require_canonical(s))

    def to_bytes(self) -> bytes:
        return int(self.n).to_bytes(FR_BYTE_LEN, "big")

    def to_hex(self, prefix: bool = True) -> str:
        h = self.to_bytes().hex()
        return ("0x" + h) if prefix else h

    def __int__(self) -> int:
        return self.n

    def __bool__(self) -> bool:
        return self.n != 0

    def __repr__(self) -> str:
        return f"Fr({self.n})"

    def __hash__(self) -> int:
        return hash(self.n)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, (int, Fr)) or isinstance(other, bool):
            return False
        return self.n == _red(_to_int(other))

    def __neg__(self) -> "Fr":
        return Fr(0 if self.n == 0 else R - self.n)

    def __add__(self, other: Union[int, "Fr"]) -> "Fr":
        return Fr(_red(self.n + _to_int(other)))

    def __radd__(self, other: Union[int, "Fr"]) -> "Fr":
        return self.__add__(other)

    def __sub__(self, other: Union[int, "Fr"]) -> "Fr":
        return Fr(_red(self.n - _to_int(other)))

    def __rsub__(self, other: Union[int, "Fr"]) -> "Fr":
        return Fr(_red(_to_int(other) - self.n))

    def __mul__(self, other: Union[int, "Fr"]) -> "Fr":
        return Fr(_red(self.n * _to_int(other)))

    def __rmul__(self, other: Union[int, "Fr"]) -> "Fr":
        return self.__mul__(other)

    def __truediv__(self, other: Union[int, "Fr"]) -> "Fr":
        o = _to_int(other)
        if o % R == 0:
            raise FieldError("Fr division by zero")
        return self * Fr.from_int(o).inv()

    def __rtruediv__(self, other: Union[int, "Fr"]) -> "Fr":
        return Fr.from_int(_to_int(other)) / self

    def __pow__(self, exponent: int, modulo=None) -> "Fr":
        if modulo is not None:
            raise FieldError("Fr.__pow__ does not support 3-arg pow")
        if exponent < 0:
            return self.inv() ** (-exponent)
        return Fr(pow(self.n, exponent, R))

    def inv(self) -> "Fr":
        """Multiplicative inverse using Fermat's little theorem."""
        if self.n == 0:
            raise FieldError("Fr inverse of zero")
        return Fr(pow(self.n, R - 2, R))

    def legendre(self) -> int:
        """Legendre symbol (self | R) in {-1, 0, 1}."""
        if self.n == 0:
            return 0
        ls = pow(self.n, (R - 1) // 2, R)
        return -1 if ls == R - 1 else int(ls)

    def sqrt(self) -> Optional["Fr"]:
        """
        Tonelli–Shanks square root.
        Returns one of the two roots if it exists, else None.
        """
        if self.n == 0:
            return Fr(0)
        if self.legendre() != 1:
            return None

        q = (R - 1) >> TWO_ADICITY
        m = TWO_ADICITY
        c = pow(MULTIPLICATIVE_GENERATOR, q, R)
        t = pow(self.n, q, R)
        r = pow(self.n, (q + 1) // 2, R)

        while True:
            if t == 0:
                return Fr(0)
            if t == 1:
                return Fr(r)
            i = 1
            t2i = (t * t) % R
            while i < m and t2i != 1:
                t2i = (t2i * t2i) % R
                i += 1
            b = pow(c, 1 << (m - i - 1), R)
            r = (r * b) % R
            c = (b * b) % R
            t = (t * c) % R
            m = i

    @staticmethod
    def zero() -> "Fr":
        return Fr(0)

    @staticmethod
    def one() -> "Fr":
        return Fr(1)


# --- Integer fast paths ------------------------------------------------------


def inv(x: int) -> int:
    x %= R
    if x == 0:
        raise FieldError("inverse of zero")
    return pow(x, R - 2, R)


def batch_inverse(values: Sequence[int]) -> List[int]:
    """
    Simultaneous inversion of many integers mod R in ~3 mults/elem plus one inversion.
    Zeros are preserved as zero (they have no inverse).
    """
    n = len(values)
    if n == 0:
        return []
    prefix = [1] * n
    acc = 1
    for i, a in enumerate(values):
        prefix[i] = acc
        if a % R:
            acc = acc * a % R

    inv_acc = pow(acc, R - 2, R)

    out = [0] * n
    for i in range(n - 1, -1, -1):
        a = values[i] % R
        if a == 0:
            continue
        out[i] = prefix[i] * inv_acc % R
        inv_acc = inv_acc * a % R
    return out


def root_of_unity(order: int) -> int:
    """Primitive `order`-th root of unity; `order` must be a power of two <= 2^28."""
    if order <= 0 or order & (order - 1):
        raise FieldError("root-of-unity order must be a power of two", ctx={"order": order})
    if order > (1 << TWO_ADICITY):
        raise FieldError("root-of-unity order exceeds the field's two-adicity", ctx={"order": order})
    return pow(MULTIPLICATIVE_GENERATOR, (R - 1) // order, R)


FR_ZERO = Fr.zero()
FR_ONE = Fr.one()

__all__ = [
    "R",
    "FR_BYTE_LEN",
    "TWO_ADICITY",
    "MULTIPLICATIVE_GENERATOR",
    "Fr",
    "FR_ZERO",
    "FR_ONE",
    "parse_int",
    "is_canonical",
    "require_canonical",
    "inv",
    "batch_inverse",
    "root_of_unity",
]
