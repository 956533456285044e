"""
Rank-1 constraint system builder.

Every value in a program is a linear combination of witness wires, stored as a
dict mapping wire index -> coefficient (coefficients with value 0 are
omitted). Wire 0 is the constant 1, so constants are combinations over wire 0.

A constraint asserts <A, w> · <B, w> = <C, w> and carries a label; `check`
reports the first violated constraint by that label.

Wires are laid out as [one, public inputs (in declaration order), private
wires]. Each wire has a hint that computes its value during `solve` from the
named inputs and the wires allocated before it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from shield.errors import MalformedWitness

from .field import R, is_canonical

ONE = 0


class LinearCombination:
    __slots__ = ("terms",)

    def __init__(self, terms: Optional[Mapping[int, int]] = None) -> None:
        self.terms: Dict[int, int] = {}
        if terms:
            for i, c in terms.items():
                c %= R
                if c:
                    self.terms[i] = c

    @classmethod
    def wire(cls, index: int) -> "LinearCombination":
        return cls({index: 1})

    @classmethod
    def constant(cls, value: int) -> "LinearCombination":
        return cls({ONE: value})

    def __repr__(self) -> str:
        return f"LC({self.terms})"

    def is_zero(self) -> bool:
        return not self.terms

    def evaluate(self, values: Sequence[int]) -> int:
        acc = 0
        for i, c in self.terms.items():
            acc += values[i] * c
        return acc % R

    def __add__(self, other: "Operand") -> "LinearCombination":
        o = as_lc(other)
        out = dict(self.terms)
        for i, c in o.terms.items():
            out[i] = (out.get(i, 0) + c) % R
        return LinearCombination(out)

    __radd__ = __add__

    def __neg__(self) -> "LinearCombination":
        return LinearCombination({i: -c for i, c in self.terms.items()})

    def __sub__(self, other: "Operand") -> "LinearCombination":
        return self + (-as_lc(other))

    def __rsub__(self, other: "Operand") -> "LinearCombination":
        return as_lc(other) - self

    def __mul__(self, k: int) -> "LinearCombination":
        if not isinstance(k, int):
            raise TypeError("linear combinations only scale by field constants")
        return LinearCombination({i: c * k for i, c in self.terms.items()})

    __rmul__ = __mul__


Operand = Union[LinearCombination, int]


def as_lc(x: Operand) -> LinearCombination:
    if isinstance(x, LinearCombination):
        return x
    if isinstance(x, int):
        return LinearCombination.constant(x)
    raise TypeError(f"cannot use {type(x).__name__} as a linear combination")


@dataclass(frozen=True)
class Constraint:
    a: LinearCombination
    b: LinearCombination
    c: LinearCombination
    label: str


class Solver:
    """Witness under construction, handed to wire hints."""

    def __init__(self, inputs: Mapping[str, int]) -> None:
        self.inputs = inputs
        self.values: List[int] = [1]

    def value(self, x: Operand) -> int:
        return as_lc(x).evaluate(self.values)

    def input(self, name: str) -> int:
        try:
            v = self.inputs[name]
        except KeyError:
            raise MalformedWitness(f"missing input {name!r}", ctx={"input": name}) from None
        if not is_canonical(v):
            raise MalformedWitness(
                f"input {name!r} is not a canonical field element", ctx={"input": name}
            )
        return v


Hint = Callable[[Solver], int]


@dataclass
class Wire:
    name: str
    public: bool
    hint: Optional[Hint] = None


@dataclass
class ConstraintSystem:
    name: str = "circuit"
    wires: List[Wire] = field(default_factory=lambda: [Wire("one", True)])
    constraints: List[Constraint] = field(default_factory=list)
    num_public: int = 0  # excluding the constant wire

    # --- allocation -------------------------------------------------------

    def public_input(self, name: str) -> LinearCombination:
        """Declare the next public input. All public inputs precede private wires."""
        if len(self.wires) != self.num_public + 1:
            raise ValueError("public inputs must be declared before any private wire")
        self.num_public += 1
        return self._push(Wire(name, True, lambda s, _n=name: s.input(_n)))

    def private_input(self, name: str) -> LinearCombination:
        return self._push(Wire(name, False, lambda s, _n=name: s.input(_n)))

    def alloc(self, name: str, hint: Hint) -> LinearCombination:
        return self._push(Wire(name, False, hint))

    def _push(self, wire: Wire) -> LinearCombination:
        self.wires.append(wire)
        return LinearCombination.wire(len(self.wires) - 1)

    def enforce(self, a: Operand, b: Operand, c: Operand, label: str) -> None:
        self.constraints.append(Constraint(as_lc(a), as_lc(b), as_lc(c), label))

    # --- introspection ----------------------------------------------------

    @property
    def num_wires(self) -> int:
        return len(self.wires)

    @property
    def num_constraints(self) -> int:
        return len(self.constraints)

    @property
    def public_names(self) -> List[str]:
        return [w.name for w in self.wires[1 : self.num_public + 1]]

    def stats(self) -> Dict[str, int]:
        nnz = sum(
            len(k.a.terms) + len(k.b.terms) + len(k.c.terms) for k in self.constraints
        )
        return {
            "constraints": self.num_constraints,
            "wires": self.num_wires,
            "public": self.num_public,
            "private": self.num_wires - self.num_public - 1,
            "nonzero": nnz,
        }

    def digest(self) -> str:
        """SHA3-256 over the wire layout and every constraint matrix entry."""
        h = hashlib.sha3_256()
        h.update(f"{self.name}|{self.num_wires}|{self.num_public}|".encode())
        for k in self.constraints:
            for lc in (k.a, k.b, k.c):
                for i in sorted(lc.terms):
                    h.update(i.to_bytes(4, "big"))
                    h.update(lc.terms[i].to_bytes(32, "big"))
                h.update(b";")
            h.update(b"|")
        return h.hexdigest()

    # --- witness ----------------------------------------------------------

    def solve(self, inputs: Mapping[str, int]) -> List[int]:
        """Run every wire hint in allocation order and return the full assignment."""
        solver = Solver(inputs)
        for wire in self.wires[1:]:
            assert wire.hint is not None, f"wire {wire.name} has no hint"
            solver.values.append(wire.hint(solver) % R)
        return solver.values

    def first_violation(self, values: Sequence[int]) -> Optional[Constraint]:
        for k in self.constraints:
            if k.a.evaluate(values) * k.b.evaluate(values) % R != k.c.evaluate(values):
                return k
        return None

    def check(self, values: Sequence[int]) -> None:
        """Raise MalformedWitness naming the first unsatisfied constraint."""
        if len(values) != self.num_wires or values[0] != 1:
            raise MalformedWitness("assignment does not match the wire layout")
        bad = self.first_violation(values)
        if bad is not None:
            raise MalformedWitness(
                f"constraint {bad.label!r} is not satisfied", constraint=bad.label
            )

    def is_satisfied(self, values: Sequence[int]) -> bool:
        return len(values) == self.num_wires and self.first_violation(values) is None

    def labels(self) -> Iterable[str]:
        return (k.label for k in self.constraints)


__all__ = [
    "ONE",
    "LinearCombination",
    "Operand",
    "as_lc",
    "Constraint",
    "Solver",
    "Hint",
    "Wire",
    "ConstraintSystem",
]
