from __future__ import annotations

import pytest

from shield.errors import MalformedWitness
from shield.zk import gadgets
from shield.zk.field import R
from shield.zk.r1cs import ConstraintSystem, LinearCombination


def test_linear_combination_arithmetic():
    a = LinearCombination.wire(1)
    b = LinearCombination.wire(2)
    lc = a * 3 + b - 5
    assert lc.evaluate([1, 10, 20]) == (30 + 20 - 5)
    assert (a - a).is_zero()
    assert (-a).evaluate([1, 4, 0]) == R - 4


def test_mul_gadget_and_labels():
    cs = ConstraintSystem(name="mul")
    x = cs.private_input("x")
    y = cs.private_input("y")
    z = gadgets.mul(cs, x, y, "xy")
    values = cs.solve({"x": 6, "y": 7})
    cs.check(values)
    assert z.evaluate(values) == 42
    assert list(cs.labels()) == ["xy"]


def test_public_inputs_must_come_first():
    cs = ConstraintSystem()
    cs.private_input("x")
    with pytest.raises(ValueError):
        cs.public_input("y")


def test_missing_and_non_canonical_inputs():
    cs = ConstraintSystem()
    cs.public_input("p")
    with pytest.raises(MalformedWitness) as ei:
        cs.solve({})
    assert ei.value.ctx["input"] == "p"
    with pytest.raises(MalformedWitness):
        cs.solve({"p": R})


def test_check_names_first_violation():
    cs = ConstraintSystem()
    x = cs.private_input("x")
    gadgets.assert_equal(cs, x, 3, "x_is_three")
    gadgets.assert_equal(cs, x, 4, "x_is_four")
    values = cs.solve({"x": 3})
    with pytest.raises(MalformedWitness) as ei:
        cs.check(values)
    assert ei.value.constraint == "x_is_four"
    assert not cs.is_satisfied(values)


def test_check_rejects_wrong_layout():
    cs = ConstraintSystem()
    cs.private_input("x")
    with pytest.raises(MalformedWitness):
        cs.check([1])
    with pytest.raises(MalformedWitness):
        cs.check([0, 1])


@pytest.mark.parametrize("x", [0, 1, 9, 15])
def test_num2bits_in_range(x):
    cs = ConstraintSystem()
    v = cs.private_input("v")
    bits = gadgets.num2bits(cs, v, 4, "v_range")
    values = cs.solve({"v": x})
    cs.check(values)
    assert sum(b.evaluate(values) << i for i, b in enumerate(bits)) == x


@pytest.mark.parametrize("x", [16, 1 << 40, R - 1])
def test_num2bits_out_of_range(x):
    cs = ConstraintSystem()
    v = cs.private_input("v")
    gadgets.num2bits(cs, v, 4, "v_range")
    with pytest.raises(MalformedWitness) as ei:
        cs.check(cs.solve({"v": x}))
    assert ei.value.constraint == "v_range.sum"


def test_less_than_truth_table():
    for a in range(0, 16, 3):
        for b in range(0, 16, 5):
            cs = ConstraintSystem()
            x = cs.private_input("a")
            y = cs.private_input("b")
            lt = gadgets.less_than(cs, x, y, 4, "lt")
            values = cs.solve({"a": a, "b": b})
            cs.check(values)
            assert lt.evaluate(values) == int(a < b)


def test_digest_depends_on_structure():
    def build(k: int) -> str:
        cs = ConstraintSystem(name="d")
        x = cs.private_input("x")
        gadgets.assert_equal(cs, x, k, "eq")
        return cs.digest()

    assert build(1) == build(1)
    assert build(1) != build(2)


def test_stats():
    cs = ConstraintSystem()
    cs.public_input("p")
    x = cs.private_input("x")
    gadgets.mul(cs, x, x, "sq")
    st = cs.stats()
    assert st["public"] == 1
    assert st["constraints"] == 1
    assert st["wires"] == 4
    assert st["private"] == 2
