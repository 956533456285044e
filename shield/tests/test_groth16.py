from __future__ import annotations

import asyncio
import copy
import threading

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from shield.errors import GenerationCancelled, MalformedWitness
from shield.tests import COMPLIANCE_WITNESS, REF_WITNESS, THRESHOLD
from shield.types import ProofBundle
from shield.zk.backend import Groth16Backend
from shield.zk.field import R
from shield.zk.groth16_bn254 import verify_groth16

pytestmark = pytest.mark.slow


def _verify(backend, bundle, signals=None) -> bool:
    return verify_groth16(
        backend.vk_json,
        bundle.proof.to_json(),
        bundle.public_signals.to_list() if signals is None else signals,
    )


def test_reference_scenario_round_trips(base_backend, ref_bundle):
    assert ref_bundle.circuit_id == base_backend.circuit_id
    assert ref_bundle.vk_hash == base_backend.vk_hash
    assert base_backend.verify_bundle(ref_bundle)


def test_bundle_json_round_trip_still_verifies(base_backend, ref_bundle):
    again = ProofBundle.from_json(ref_bundle.to_json())
    assert again == ref_bundle
    assert base_backend.verify_bundle(again)


def test_compliance_scenario_round_trips(compliance_backend, compliance_bundle):
    assert compliance_bundle.public_signals.compliance_threshold == THRESHOLD
    assert len(compliance_bundle.public_signals.to_list()) == 4
    assert compliance_backend.verify_bundle(compliance_bundle)


def test_compliance_generation_rejects_over_threshold(compliance_backend):
    with pytest.raises(MalformedWitness) as ei:
        compliance_backend.generate(dict(REF_WITNESS, amount=15000), THRESHOLD)
    assert ei.value.constraint == "amount_below_threshold"


def test_compliance_requires_threshold_and_base_refuses_one(base_backend, compliance_backend):
    with pytest.raises(MalformedWitness):
        compliance_backend.generate(COMPLIANCE_WITNESS)
    with pytest.raises(MalformedWitness):
        base_backend.generate(REF_WITNESS, THRESHOLD)


def test_range_violation_rejected_at_generation(base_backend):
    with pytest.raises(MalformedWitness) as ei:
        base_backend.generate(dict(REF_WITNESS, amount=1 << 64))
    assert ei.value.constraint == "amount_range.sum"


def test_each_signal_is_bound(base_backend, ref_bundle):
    signals = ref_bundle.public_signals.to_list()
    for i in range(len(signals)):
        tampered = list(signals)
        tampered[i] = (tampered[i] + 1) % R
        assert not _verify(base_backend, ref_bundle, tampered)


def test_reordered_signals_fail(base_backend, ref_bundle):
    s = ref_bundle.public_signals.to_list()
    assert not _verify(base_backend, ref_bundle, [s[1], s[0], s[2]])


def test_non_canonical_signal_is_rejected_not_reduced(base_backend, ref_bundle):
    s = ref_bundle.public_signals.to_list()
    assert not _verify(base_backend, ref_bundle, [s[0] + R, s[1], s[2]])


def test_wrong_signal_count_fails(base_backend, ref_bundle):
    s = ref_bundle.public_signals.to_list()
    assert not _verify(base_backend, ref_bundle, s[:2])
    assert not _verify(base_backend, ref_bundle, s + [1])


def test_proof_for_other_circuit_fails(compliance_backend, ref_bundle):
    assert not _verify(compliance_backend, ref_bundle)


def test_swapped_proof_points_fail(base_backend, ref_bundle):
    pj = ref_bundle.proof.to_json()
    pj["pi_a"], pj["pi_c"] = pj["pi_c"], pj["pi_a"]
    assert not verify_groth16(base_backend.vk_json, pj, ref_bundle.public_signals.to_list())


@settings(max_examples=6, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    part=st.sampled_from(["pi_a", "pi_c"]),
    coord=st.integers(0, 1),
    value=st.one_of(st.integers(0, 2**256), st.just("garbage"), st.just("-1")),
)
def test_garbage_g1_coordinates_never_verify(base_backend, ref_bundle, part, coord, value):
    pj = copy.deepcopy(ref_bundle.proof.to_json())
    if str(pj[part][coord]) == str(value):
        return
    pj[part][coord] = str(value)
    assert not verify_groth16(base_backend.vk_json, pj, ref_bundle.public_signals.to_list())


@pytest.mark.parametrize(
    "mutate",
    [
        lambda pj: pj.pop("pi_b"),
        lambda pj: pj.__setitem__("pi_b", [["1", "2"], ["3", "4"], ["1", "0"]]),
        lambda pj: pj.__setitem__("protocol", "plonk"),
        lambda pj: pj.__setitem__("pi_a", ["0", "1", "0"]),
    ],
)
def test_malformed_proofs_return_false(base_backend, ref_bundle, mutate):
    pj = copy.deepcopy(ref_bundle.proof.to_json())
    mutate(pj)
    assert not verify_groth16(base_backend.vk_json, pj, ref_bundle.public_signals.to_list())


def test_malformed_vk_returns_false(base_backend, ref_bundle):
    vk = copy.deepcopy(base_backend.vk_json)
    vk["IC"] = vk["IC"][:-1]
    assert not verify_groth16(vk, ref_bundle.proof.to_json(), ref_bundle.public_signals.to_list())
    assert not verify_groth16({}, ref_bundle.proof.to_json(), ref_bundle.public_signals.to_list())


def test_proofs_are_rerandomized(base_backend, ref_bundle):
    again = base_backend.generate(REF_WITNESS)
    assert again.public_signals == ref_bundle.public_signals
    assert again.proof != ref_bundle.proof
    assert base_backend.verify_bundle(again)


def test_calldata_swaps_g2_limbs(ref_bundle):
    cd = Groth16Backend.calldata(ref_bundle)
    pb = ref_bundle.proof.pi_b
    assert cd.b == [[pb[0][1], pb[0][0]], [pb[1][1], pb[1][0]]]
    assert cd.a == ref_bundle.proof.pi_a[:2]
    assert cd.c == ref_bundle.proof.pi_c[:2]
    assert cd.public_signals == ref_bundle.public_signals.to_strings()
    assert cd.as_args()[3] == cd.public_signals


def test_pre_cancelled_generation(base_backend):
    ev = threading.Event()
    ev.set()
    with pytest.raises(GenerationCancelled) as ei:
        base_backend.generate(REF_WITNESS, cancel=ev)
    assert ei.value.ctx["phase"] == "witness"


def test_async_generation(base_backend):
    bundle = asyncio.run(base_backend.agenerate(REF_WITNESS))
    assert base_backend.verify_bundle(bundle)
