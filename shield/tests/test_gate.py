from __future__ import annotations

import asyncio
import threading
from hashlib import sha3_256

import pytest
from prometheus_client import REGISTRY

from shield.audit import MemoryAuditLog
from shield.commitment import public_signals_of
from shield.errors import (
    ErrorCode,
    InvalidProof,
    ReplayedNullifier,
    StoreError,
    TransportFailure,
    VerifierKeyMismatch,
)
from shield.gate import (
    DELIVERED,
    RECORDED_NOT_DELIVERED,
    DispatchGate,
    DispatchRequest,
    message_hash_of,
)
from shield.ledger import MemoryLedger, nullifier_key
from shield.tests import REF_WITNESS, address, with_nullifier
from shield.transport import LoopbackTransport
from shield.types import Groth16Proof, ProofBundle
from shield.vk_registry import VkRegistry, make_record
from shield.zk.field import R

CIRCUIT = "shield_privacy_base_r64@1"
SENDER = address(0x11)
DEST = address(0x22)
NOW = 1_700_000_000

PLACEHOLDER_PROOF = Groth16Proof(
    pi_a=["1", "2", "1"],
    pi_b=[["1", "0"], ["1", "0"], ["1", "0"]],
    pi_c=["1", "2", "1"],
)


def _vk(tag: str) -> dict:
    return {"protocol": "groth16", "nPublic": 3, "IC": [[tag, "2", "1"]] * 4}


class Verdict:
    """Stand-in verifier; counts calls and answers `ok`."""

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.calls = 0

    def __call__(self, vk, proof, signals) -> bool:
        self.calls += 1
        return self.ok


@pytest.fixture
def fake_registry():
    reg = VkRegistry()
    reg.register(make_record(CIRCUIT, _vk("1")))
    reg.rotate(CIRCUIT)
    return reg


@pytest.fixture
def verdict():
    return Verdict()


@pytest.fixture
def gate(fake_registry, verdict):
    return DispatchGate(
        registry=fake_registry,
        ledger=MemoryLedger(),
        transport=LoopbackTransport(),
        audit=MemoryAuditLog(),
        verifier=verdict,
        clock=lambda: NOW,
    )


def bundle_for(witness, registry, circuit_id=CIRCUIT) -> ProofBundle:
    return ProofBundle(
        proof=PLACEHOLDER_PROOF,
        public_signals=public_signals_of(witness),
        circuit_id=circuit_id,
        vk_hash=registry.current().vk_hash,
    )


def _count(outcome: str) -> float:
    return REGISTRY.get_sample_value("shield_dispatch_total", {"outcome": outcome}) or 0.0


# ---- message hash ----


def test_message_hash_packing():
    nh = 12345
    expected = sha3_256(
        bytes([0x11]) * 20
        + (2).to_bytes(32, "big")
        + bytes([0x22]) * 20
        + b"hello"
        + nh.to_bytes(32, "big")
        + NOW.to_bytes(32, "big")
    ).hexdigest()
    assert message_hash_of(SENDER, 2, DEST, b"hello", nh, NOW) == "0x" + expected


def test_message_hash_resource_and_free_form_targets():
    resource = "0x" + "ab" * 32
    h32 = message_hash_of(SENDER, 2, resource, b"", 1, NOW, target_width=32)
    h20 = message_hash_of(SENDER, 2, resource, b"", 1, NOW)
    assert h32 != h20
    assert message_hash_of("alice", 2, "bob", b"", 1, NOW).startswith("0x")


def test_message_hash_depends_on_every_field():
    base = (SENDER, 2, DEST, b"p", 1, NOW)
    h = message_hash_of(*base)
    for i, alt in enumerate((address(0x12), 3, address(0x23), b"q", 2, NOW + 1)):
        args = list(base)
        args[i] = alt
        assert message_hash_of(*args) != h


# ---- happy path ----


def test_send_private_message(gate, fake_registry, verdict):
    b = bundle_for(REF_WITNESS, fake_registry)
    before = _count("delivered")

    receipt = gate.send_private_message(2, DEST, b"hello", b, sender=SENDER)

    nh = b.public_signals.nullifier_hash
    assert receipt.nullifier_hash == nullifier_key(nh)
    assert receipt.message_hash == message_hash_of(SENDER, 2, DEST, b"hello", nh, NOW)
    assert verdict.calls == 1
    assert gate.is_nullifier_used(nh)
    assert gate.is_message_recorded(receipt.message_id)
    assert gate.is_message_verified(receipt.message_hash)

    rec = gate.audit.get(receipt.message_hash)
    assert rec.status == DELIVERED
    assert rec.message_id == receipt.message_id
    assert rec.vk_hash == fake_registry.current().vk_hash
    assert rec.public_signals == b.public_signals.to_strings()

    (msg,) = gate.transport.outbox
    assert msg.destination == DEST
    assert msg.payload == b"hello"
    assert _count("delivered") == before + 1


def test_dispatch_returns_message_id(gate, fake_registry):
    b = bundle_for(REF_WITNESS, fake_registry)
    mid = gate.dispatch(b.proof, b.public_signals.to_strings(), b"x", DEST, SENDER, destination_chain_id=5)
    assert gate.is_message_recorded(mid)
    assert gate.transport.outbox[0].destination_id == 5


def test_send_to_resource(gate, fake_registry):
    resource = "0x" + "ab" * 32
    b = bundle_for(REF_WITNESS, fake_registry)
    receipt = gate.send_private_message_to_resource(2, resource, b"r", b, sender=SENDER)
    assert gate.transport.outbox[0].resource_id == resource
    assert gate.audit.get(receipt.message_hash).resource_id == resource
    assert receipt.message_hash == message_hash_of(
        SENDER, 2, resource, b"r", b.public_signals.nullifier_hash, NOW, target_width=32
    )


def test_not_yet_used_nullifier_reads_false(gate):
    assert not gate.is_nullifier_used(1)
    assert not gate.is_message_recorded("0xnothing")
    assert not gate.is_message_verified("0xnothing")


# ---- rejections ----


def test_replay_is_rejected_before_verification(gate, fake_registry, verdict):
    b = bundle_for(REF_WITNESS, fake_registry)
    gate.send_private_message(2, DEST, b"a", b, sender=SENDER)
    before = _count("replay")

    with pytest.raises(ReplayedNullifier) as ei:
        gate.send_private_message(2, DEST, b"different payload", b, sender=SENDER)

    assert ei.value.code == ErrorCode.NULLIFIER_REUSE
    assert ei.value.nullifier_hash == nullifier_key(b.public_signals.nullifier_hash)
    assert verdict.calls == 1
    assert len(gate.transport.outbox) == 1
    assert _count("replay") == before + 1


def test_invalid_proof_changes_nothing(gate, fake_registry, verdict):
    verdict.ok = False
    b = bundle_for(REF_WITNESS, fake_registry)

    with pytest.raises(InvalidProof) as ei:
        gate.send_private_message(2, DEST, b"a", b, sender=SENDER)

    assert not isinstance(ei.value, VerifierKeyMismatch)
    assert not gate.is_nullifier_used(b.public_signals.nullifier_hash)
    assert gate.ledger.size() == 0
    assert gate.audit.list_recent() == []
    assert gate.transport.outbox == []

    verdict.ok = True
    gate.send_private_message(2, DEST, b"a", b, sender=SENDER)


def test_superseded_key_is_a_mismatch(gate, fake_registry, verdict):
    stale = bundle_for(REF_WITNESS, fake_registry)
    new = fake_registry.register(make_record("shield_privacy_base_r64@2", _vk("9")))
    fake_registry.rotate(new.circuit_id)

    with pytest.raises(VerifierKeyMismatch) as ei:
        gate.send_private_message(2, DEST, b"a", stale, sender=SENDER)

    assert ei.value.code == ErrorCode.VK_MISMATCH
    assert ei.value.ctx["expected_vk_hash"] == new.vk_hash
    assert verdict.calls == 0
    assert gate.ledger.size() == 0


def test_current_key_is_used_for_unbound_proofs(fake_registry):
    seen = []

    def verifier(vk, proof, signals):
        seen.append(vk)
        return True

    g = DispatchGate(
        registry=fake_registry, ledger=MemoryLedger(), transport=LoopbackTransport(), verifier=verifier
    )
    new = fake_registry.register(make_record("next", _vk("7")))
    fake_registry.rotate("next")
    signals = public_signals_of(REF_WITNESS)
    g.send_private_message(2, DEST, b"", PLACEHOLDER_PROOF, signals, sender=SENDER)
    assert seen == [new.vk]


@pytest.mark.parametrize(
    "signals",
    [
        None,
        ["1", "2"],
        [str(R), "2", "3"],
        ["x", "2", "3"],
    ],
)
def test_bad_public_signals_are_invalid(gate, signals):
    with pytest.raises(InvalidProof):
        gate.dispatch(PLACEHOLDER_PROOF, signals, b"", DEST, SENDER)
    assert gate.ledger.size() == 0


def test_raw_mapping_proof_accepted(gate, fake_registry):
    signals = public_signals_of(REF_WITNESS).to_strings()
    gate.dispatch(PLACEHOLDER_PROOF.to_json(), signals, b"", DEST, SENDER)
    assert gate.ledger.size() == 1


def test_target_must_be_exactly_one(gate, fake_registry):
    b = bundle_for(REF_WITNESS, fake_registry)
    for req in (
        DispatchRequest(2, b"", b, SENDER),
        DispatchRequest(2, b"", b, SENDER, destination=DEST, resource_id="0x01"),
    ):
        with pytest.raises(ValueError):
            gate.send_private_messages([req])
    assert gate.ledger.size() == 0


# ---- transport failure ----


def test_transport_failure_keeps_nullifier(gate, fake_registry):
    b = bundle_for(REF_WITNESS, fake_registry)
    gate.transport.fail_next()
    before = _count("transport_failure")

    with pytest.raises(TransportFailure) as ei:
        gate.send_private_message(2, DEST, b"a", b, sender=SENDER)

    nh_hex = nullifier_key(b.public_signals.nullifier_hash)
    assert isinstance(ei.value.__cause__, ConnectionError)
    assert ei.value.ctx["nullifier_hash"] == nh_hex
    assert gate.is_nullifier_used(nh_hex)

    (rec,) = gate.audit.by_nullifier(nh_hex)
    assert rec.status == RECORDED_NOT_DELIVERED
    assert rec.message_id is None
    assert "ConnectionError" in rec.error
    assert gate.is_message_verified(ei.value.ctx["message_hash"])
    assert _count("transport_failure") == before + 1

    with pytest.raises(ReplayedNullifier):
        gate.send_private_message(2, DEST, b"a", b, sender=SENDER)


def test_cancelled_send_leaves_audit_record(gate, fake_registry):
    b = bundle_for(REF_WITNESS, fake_registry)
    gate.transport.fail_next(asyncio.CancelledError())

    with pytest.raises(asyncio.CancelledError):
        gate.send_private_message(2, DEST, b"a", b, sender=SENDER)

    nh_hex = nullifier_key(b.public_signals.nullifier_hash)
    assert gate.is_nullifier_used(nh_hex)
    (rec,) = gate.audit.by_nullifier(nh_hex)
    assert rec.status == RECORDED_NOT_DELIVERED
    assert rec.message_id is None
    assert gate.is_message_verified(rec.message_hash)


class FlakyAudit(MemoryAuditLog):
    """Accepts the first `good` writes, then raises StoreError."""

    def __init__(self, good: int) -> None:
        super().__init__()
        self.good = good

    def put(self, record) -> None:
        if self.good <= 0:
            raise StoreError("audit write failed")
        self.good -= 1
        super().put(record)


def test_audit_update_failure_keeps_transport_failure(fake_registry):
    g = DispatchGate(
        registry=fake_registry,
        ledger=MemoryLedger(),
        transport=LoopbackTransport(),
        audit=FlakyAudit(good=1),
        verifier=Verdict(),
        clock=lambda: NOW,
    )
    b = bundle_for(REF_WITNESS, fake_registry)
    g.transport.fail_next()

    with pytest.raises(TransportFailure) as ei:
        g.send_private_message(2, DEST, b"a", b, sender=SENDER)

    assert isinstance(ei.value.__cause__, ConnectionError)
    (rec,) = g.audit.by_nullifier(ei.value.ctx["nullifier_hash"])
    assert rec.status == RECORDED_NOT_DELIVERED


def test_audit_update_failure_keeps_delivery(fake_registry):
    g = DispatchGate(
        registry=fake_registry,
        ledger=MemoryLedger(),
        transport=LoopbackTransport(),
        audit=FlakyAudit(good=1),
        verifier=Verdict(),
        clock=lambda: NOW,
    )
    b = bundle_for(REF_WITNESS, fake_registry)

    receipt = g.send_private_message(2, DEST, b"a", b, sender=SENDER)

    assert [m.message_id for m in g.transport.outbox] == [receipt.message_id]
    assert g.is_nullifier_used(receipt.nullifier_hash)


# ---- batch & concurrency ----


def test_batch_items_are_independent(gate, fake_registry):
    first = bundle_for(REF_WITNESS, fake_registry)
    other = bundle_for(with_nullifier(REF_WITNESS, 42), fake_registry)
    outcomes = gate.send_private_messages(
        [
            DispatchRequest(2, b"1", first, SENDER, destination=DEST),
            DispatchRequest(2, b"2", first, SENDER, destination=DEST),
            DispatchRequest(3, b"3", other, SENDER, resource_id="0x" + "cd" * 32),
        ]
    )
    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, ReplayedNullifier)
    assert gate.ledger.size() == 2
    assert len(gate.transport.outbox) == 2


def test_concurrent_dispatch_of_one_nullifier(fake_registry):
    g = DispatchGate(
        registry=fake_registry, ledger=MemoryLedger(), transport=LoopbackTransport(), verifier=Verdict()
    )
    b = bundle_for(REF_WITNESS, fake_registry)
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def worker(i):
        barrier.wait()
        try:
            g.send_private_message(2, DEST, bytes([i]), b, sender=SENDER)
            out = "ok"
        except ReplayedNullifier:
            out = "replay"
        with lock:
            results.append(out)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count("replay") == 7
    assert len(g.transport.outbox) == 1


# ---- end to end with real proofs ----


@pytest.mark.slow
def test_end_to_end_with_real_proofs(registry, ledger, transport, base_backend, ref_bundle, compliance_backend):
    g = DispatchGate(registry=registry, ledger=ledger, transport=transport)
    receipt = g.send_private_message(2, DEST, b"hello", ref_bundle, sender=SENDER)
    assert g.is_message_recorded(receipt.message_id)

    with pytest.raises(ReplayedNullifier):
        g.send_private_message(2, DEST, b"hello", ref_bundle, sender=SENDER)

    fresh = base_backend.generate(with_nullifier(REF_WITNESS, 1111))
    tampered = list(fresh.public_signals.to_strings())
    tampered[2] = "7"
    with pytest.raises(InvalidProof):
        g.dispatch(fresh.proof, tampered, b"", DEST, SENDER)
    assert not g.is_nullifier_used(fresh.public_signals.nullifier_hash)

    registry.register(make_record(compliance_backend.circuit_id, compliance_backend.vk_json))
    registry.rotate(compliance_backend.circuit_id)
    with pytest.raises(VerifierKeyMismatch):
        g.send_private_message(2, DEST, b"", fresh, sender=SENDER)
    with pytest.raises(InvalidProof):
        g.dispatch(fresh.proof, fresh.public_signals, b"", DEST, SENDER)
    assert not g.is_nullifier_used(fresh.public_signals.nullifier_hash)
