from __future__ import annotations

import pytest

from shield.errors import (
    ConfigError,
    ErrorCode,
    InvalidProof,
    MalformedWitness,
    ReplayedNullifier,
    ShieldError,
    TransportFailure,
    VerifierKeyMismatch,
    rethrow_as,
)


def test_str_and_dict_round_trip():
    e = MalformedWitness(constraint="amount_range.sum", ctx={"input": "amount"})
    assert e.constraint == "amount_range.sum"
    assert str(e).startswith("[MALFORMED_WITNESS] witness does not satisfy the circuit")
    back = ShieldError.from_dict(e.to_dict())
    assert back.code is ErrorCode.MALFORMED_WITNESS
    assert back.ctx == {"constraint": "amount_range.sum", "input": "amount"}


def test_unknown_code_survives_from_dict():
    back = ShieldError.from_dict({"code": "SOMETHING_NEW", "msg": "x"})
    assert back.code == "SOMETHING_NEW"


def test_mismatch_is_an_invalid_proof():
    e = VerifierKeyMismatch(expected="sha3-256:aa", got="sha3-256:bb", nullifier_hash="0x01")
    assert isinstance(e, InvalidProof)
    assert e.code is ErrorCode.VK_MISMATCH
    assert e.ctx == {"nullifier_hash": "0x01", "expected_vk_hash": "sha3-256:aa", "got_vk_hash": "sha3-256:bb"}


def test_replay_and_transport_context():
    assert ReplayedNullifier("0x02").nullifier_hash == "0x02"
    cause = ConnectionError("down")
    t = TransportFailure(nullifier_hash="0x02", message_hash="0x03", cause=cause)
    assert t.cause is cause
    assert "cause=ConnectionError" in str(t)


def test_with_context_copies():
    e = ConfigError("bad", key="range_bits", value=0)
    e2 = e.with_context(source="env")
    assert e2.ctx == {"key": "range_bits", "value": 0, "source": "env"}
    assert "source" not in e.ctx


def test_errors_are_hashable_and_raisable():
    e = InvalidProof()
    assert hash(e) == hash(e)
    with pytest.raises(InvalidProof):
        raise e


def test_rethrow_as_wraps_foreign_errors():
    with pytest.raises(ShieldError) as ei:
        with rethrow_as(ErrorCode.STORE, msg="corrupt row", row=3):
            raise KeyError("x")
    assert ei.value.code is ErrorCode.STORE
    assert ei.value.ctx == {"row": 3}
    assert isinstance(ei.value.__cause__, KeyError)


def test_rethrow_as_passes_shield_errors_through():
    with pytest.raises(ReplayedNullifier):
        with rethrow_as(ErrorCode.STORE, msg="unused"):
            raise ReplayedNullifier("0x01")
