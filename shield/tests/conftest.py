from __future__ import annotations

import logging
import random

import pytest

from shield.ledger import MemoryLedger
from shield.tests import COMPLIANCE_WITNESS, REF_WITNESS, THRESHOLD
from shield.transport import LoopbackTransport
from shield.vk_registry import VkRegistry, make_record
from shield.zk.backend import Groth16Backend
from shield.zk.circuit import BASE, COMPLIANCE, build_circuit


@pytest.fixture(autouse=True)
def _restore_shield_logger():
    """The CLI configures the `shield` logger tree; undo it between tests."""
    yield
    root = logging.getLogger("shield")
    for h in list(root.handlers):
        root.removeHandler(h)
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture(scope="session")
def base_circuit():
    return build_circuit(BASE)


@pytest.fixture(scope="session")
def compliance_circuit():
    return build_circuit(COMPLIANCE)


# ---- slow, session-wide Groth16 material ----


@pytest.fixture(scope="session")
def base_backend(base_circuit):
    return Groth16Backend.from_setup(base_circuit, randbelow=random.Random(1).randrange)


@pytest.fixture(scope="session")
def compliance_backend(compliance_circuit):
    return Groth16Backend.from_setup(compliance_circuit, randbelow=random.Random(2).randrange)


@pytest.fixture(scope="session")
def ref_bundle(base_backend):
    return base_backend.generate(REF_WITNESS)


@pytest.fixture(scope="session")
def compliance_bundle(compliance_backend):
    return compliance_backend.generate(COMPLIANCE_WITNESS, THRESHOLD)


# ---- cheap gate plumbing ----


@pytest.fixture
def registry(base_backend):
    reg = VkRegistry()
    reg.register(make_record(base_backend.circuit_id, base_backend.vk_json))
    reg.rotate(base_backend.circuit_id)
    return reg


@pytest.fixture
def ledger():
    return MemoryLedger()


@pytest.fixture
def transport():
    return LoopbackTransport()
