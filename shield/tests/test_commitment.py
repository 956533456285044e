from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from shield.commitment import (
    as_witness,
    commit,
    nullifier_hash_of,
    public_signals_of,
    random_field_element,
    recipient_from_address,
    recipient_hash_of,
)
from shield.errors import MalformedWitness
from shield.tests import REF_WITNESS
from shield.types import PublicSignals, Witness
from shield.zk.field import R
from shield.zk.poseidon import poseidon_hash

elements = st.integers(min_value=0, max_value=R - 1)


def test_reference_scenario_is_deterministic():
    a = public_signals_of(REF_WITNESS)
    b = public_signals_of(dict(REF_WITNESS))
    assert a == b
    assert a.commitment == poseidon_hash([123456789, 987654321, 1000])
    assert a.nullifier_hash == poseidon_hash([987654321])
    assert a.recipient_hash == poseidon_hash([555555555])
    assert a.compliance_threshold is None
    assert len(a.to_list()) == 3


def test_threshold_is_passed_through():
    s = public_signals_of(REF_WITNESS, 10000)
    assert s.compliance_threshold == 10000
    assert s.to_list()[-1] == 10000


@settings(max_examples=20, deadline=None)
@given(secret=elements, nullifier=elements, amount=elements, delta=st.integers(1, 1000))
def test_commitment_sensitive_to_every_input(secret, nullifier, amount, delta):
    c = commit(secret, nullifier, amount)
    assert commit((secret + delta) % R, nullifier, amount) != c
    assert commit(secret, (nullifier + delta) % R, amount) != c
    assert commit(secret, nullifier, (amount + delta) % R) != c


def test_nullifier_hash_independent_of_amount_and_secret():
    w2 = dict(REF_WITNESS, secret=1, amount=2)
    assert public_signals_of(w2).nullifier_hash == nullifier_hash_of(REF_WITNESS["nullifier"])
    assert public_signals_of(w2).commitment != public_signals_of(REF_WITNESS).commitment


def test_recipient_hash():
    assert recipient_hash_of("555555555") == recipient_hash_of(555555555)


@pytest.mark.parametrize("field", ["secret", "nullifier", "recipient", "amount"])
def test_non_canonical_inputs_are_malformed(field):
    w = dict(REF_WITNESS, **{field: R})
    with pytest.raises(MalformedWitness) as ei:
        public_signals_of(w)
    assert ei.value.ctx["input"] == field


def test_missing_inputs_are_malformed():
    w = dict(REF_WITNESS)
    del w["amount"]
    with pytest.raises(MalformedWitness) as ei:
        as_witness(w)
    assert ei.value.ctx["missing"] == ["amount"]


def test_witness_struct_is_validated_and_redacted():
    w = Witness(**REF_WITNESS)
    assert as_witness(w) is w
    assert "123456789" not in repr(w)
    assert "123456789" not in str(w)
    with pytest.raises(MalformedWitness):
        as_witness(Witness(secret=R, nullifier=1, recipient=1, amount=1))


def test_random_field_element_range():
    xs = {random_field_element() for _ in range(8)}
    assert all(0 < x < R for x in xs)
    assert len(xs) == 8


def test_recipient_from_address():
    addr = "0x" + "ab" * 20
    assert recipient_from_address(addr) == int("ab" * 20, 16)
    assert recipient_from_address(addr.upper().replace("0X", "0x")) == int("ab" * 20, 16)
    with pytest.raises(MalformedWitness):
        recipient_from_address("0x1234")
    with pytest.raises(MalformedWitness):
        recipient_from_address("0x" + "zz" * 20)


def test_public_signals_list_roundtrip_and_hex():
    s = public_signals_of(REF_WITNESS, 10000)
    assert PublicSignals.from_list(s.to_strings()) == s
    assert s.nullifier_hash_hex == "0x" + s.nullifier_hash.to_bytes(32, "big").hex()
    assert s.as_inputs()["complianceThreshold"] == 10000
