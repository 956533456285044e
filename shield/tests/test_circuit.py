from __future__ import annotations

import pytest

from shield.commitment import public_signals_of
from shield.errors import MalformedWitness
from shield.tests import COMPLIANCE_WITNESS, REF_WITNESS, THRESHOLD
from shield.zk.circuit import BASE, COMPLIANCE, PUBLIC_SIGNAL_ORDER, CircuitConfig, Variant, build_circuit
from shield.zk.field import R


def _check(circuit, witness, threshold=None, *, signals=None):
    s = signals or public_signals_of(witness, threshold)
    values = circuit.solve(witness, s.as_inputs())
    circuit.check(values)


def _violated(circuit, witness, threshold=None) -> str:
    with pytest.raises(MalformedWitness) as ei:
        _check(circuit, witness, threshold)
    return ei.value.constraint


def test_circuit_ids_and_public_counts(base_circuit, compliance_circuit):
    assert base_circuit.circuit_id == "shield_privacy_base_r64@1"
    assert compliance_circuit.circuit_id == "shield_privacy_compliance_r64@1"
    assert base_circuit.num_public == 3
    assert compliance_circuit.num_public == 4
    assert base_circuit.cs.public_names == list(PUBLIC_SIGNAL_ORDER)
    assert compliance_circuit.cs.public_names == list(PUBLIC_SIGNAL_ORDER) + ["complianceThreshold"]


def test_compilation_is_cached(base_circuit):
    assert build_circuit(BASE) is base_circuit
    assert build_circuit() is base_circuit


def test_config_validation():
    with pytest.raises(ValueError):
        CircuitConfig(Variant.BASE, range_bits=0)
    with pytest.raises(ValueError):
        CircuitConfig("nope")
    assert CircuitConfig("compliance", 32).circuit_id == "shield_privacy_compliance_r32@1"


def test_stats(base_circuit):
    st = base_circuit.stats()
    assert st["circuit_id"] == base_circuit.circuit_id
    assert st["digest"] == base_circuit.r1cs_digest
    assert st["public"] == 3


def test_reference_witness_satisfies_base(base_circuit):
    _check(base_circuit, REF_WITNESS)


def test_base_accepts_zero_amount(base_circuit):
    _check(base_circuit, dict(REF_WITNESS, amount=0))


def test_amount_must_fit_range(base_circuit):
    assert _violated(base_circuit, dict(REF_WITNESS, amount=1 << 64)) == "amount_range.sum"
    _check(base_circuit, dict(REF_WITNESS, amount=(1 << 64) - 1))


def test_narrow_range_variant():
    c = build_circuit(CircuitConfig(Variant.BASE, range_bits=16))
    _check(c, dict(REF_WITNESS, amount=(1 << 16) - 1))
    assert _violated(c, dict(REF_WITNESS, amount=1 << 16)) == "amount_range.sum"


@pytest.mark.parametrize(
    "field,label",
    [
        ("commitment", "commitment_binding"),
        ("nullifierHash", "nullifier_hash_binding"),
        ("recipientHash", "recipient_hash_binding"),
    ],
)
def test_public_signals_are_bound(base_circuit, field, label):
    public = public_signals_of(REF_WITNESS).as_inputs()
    public[field] = (public[field] + 1) % R
    values = base_circuit.solve(REF_WITNESS, public)
    with pytest.raises(MalformedWitness) as ei:
        base_circuit.check(values)
    assert ei.value.constraint == label


def test_compliance_reference_accepts(compliance_circuit):
    _check(compliance_circuit, COMPLIANCE_WITNESS, THRESHOLD)


@pytest.mark.parametrize("amount", [THRESHOLD - 1, 1])
def test_compliance_boundaries_accept(compliance_circuit, amount):
    _check(compliance_circuit, dict(REF_WITNESS, amount=amount), THRESHOLD)


@pytest.mark.parametrize(
    "amount,label",
    [
        (THRESHOLD, "amount_below_threshold"),
        (15000, "amount_below_threshold"),
        (0, "amount_positive"),
    ],
)
def test_compliance_boundaries_reject(compliance_circuit, amount, label):
    assert _violated(compliance_circuit, dict(REF_WITNESS, amount=amount), THRESHOLD) == label


def test_threshold_must_fit_range(compliance_circuit):
    assert _violated(compliance_circuit, REF_WITNESS, 1 << 64) == "threshold_range.sum"


def test_compliance_needs_threshold_signal(compliance_circuit):
    with pytest.raises(MalformedWitness) as ei:
        _check(compliance_circuit, COMPLIANCE_WITNESS)
    assert ei.value.ctx["input"] == "complianceThreshold"


def test_variants_have_distinct_digests(base_circuit, compliance_circuit):
    assert base_circuit.r1cs_digest != compliance_circuit.r1cs_digest
    assert COMPLIANCE.compliance and not BASE.compliance
