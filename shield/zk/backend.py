"""
Proving backends.

A backend turns a witness into a `ProofBundle` and answers verification
questions for its own proof system. The gate and the CLI only talk to the
`ProvingBackend` protocol; the registry maps stable backend *kinds*
("groth16_bn254") to factories so another proof system can be plugged in
without touching either.

    backend = create("groth16_bn254", circuit=build_circuit(COMPLIANCE))
    bundle = backend.generate(witness, threshold=10_000)
    assert backend.verify(backend.vk_json, bundle.proof.to_json(), bundle.public_signals.to_list())
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

import msgspec

from shield import metrics
from shield.commitment import as_witness, public_signals_of
from shield.errors import GenerationCancelled, MalformedWitness, ShieldError, VerifierKeyError
from shield.types import Groth16Proof, ProofBundle, PublicSignals, SolidityCalldata, Witness, compute_vk_hash

from . import groth16_bn254, groth16_prover, serialization
from .circuit import ShieldCircuit, build_circuit

log = logging.getLogger("shield.zk.backend")

GROTH16_KIND = "groth16_bn254"
VK_FORMAT = "snarkjs"


@runtime_checkable
class ProvingBackend(Protocol):
    kind: str

    @property
    def circuit_id(self) -> str: ...

    @property
    def vk_json(self) -> Dict[str, Any]: ...

    @property
    def vk_hash(self) -> str: ...

    def generate(self, witness: Any, threshold: Optional[Any] = None) -> ProofBundle: ...

    def verify(
        self,
        vk_json: Mapping[str, Any],
        proof_json: Mapping[str, Any],
        public_signals: Sequence[Any],
    ) -> bool: ...


def verify_groth16_timed(
    vk_json: Mapping[str, Any], proof_json: Mapping[str, Any], public_signals: Sequence[Any]
) -> bool:
    with metrics.timer() as t:
        ok = groth16_bn254.verify_groth16(vk_json, proof_json, public_signals)
    metrics.record_verify(ok=ok, latency_s=t[0])
    return ok


@dataclass
class Groth16Backend:
    """
    Groth16 over BN254 for one compiled circuit.

    `generate` never trusts caller-supplied public signals: they are recomputed
    from the witness with the commitment scheme, every constraint is checked
    (the first failing one is named in `MalformedWitness`), and only then does
    the prover run with fresh blinding.
    """

    circuit: ShieldCircuit
    pk: groth16_prover.ProvingKey
    vk: groth16_bn254.VerifyingKey
    kind: str = GROTH16_KIND
    _vk_json: Dict[str, Any] = field(init=False, repr=False)
    _vk_hash: str = field(init=False, default="")

    def __post_init__(self) -> None:
        if self.pk.circuit_id != self.circuit.circuit_id or self.pk.r1cs_digest != self.circuit.r1cs_digest:
            raise VerifierKeyError(
                "proving key does not belong to this circuit",
                circuit_id=self.circuit.circuit_id,
                ctx={"pk_circuit_id": self.pk.circuit_id},
            )
        if self.vk.n_public != self.circuit.num_public:
            raise VerifierKeyError(
                "verifying key public input count does not match the circuit",
                circuit_id=self.circuit.circuit_id,
                ctx={"n_public": self.vk.n_public, "expected": self.circuit.num_public},
            )
        self._vk_json = serialization.vk_to_json(self.vk)
        self._vk_hash = compute_vk_hash(self.kind, VK_FORMAT, self._vk_json)

    # ---- construction ----

    @classmethod
    def from_setup(cls, circuit: Optional[ShieldCircuit] = None, **kw: Any) -> "Groth16Backend":
        """Run a fresh trusted setup for `circuit` (default: base variant)."""
        c = circuit or build_circuit()
        pk, vk = groth16_prover.setup(c, **kw)
        return cls(circuit=c, pk=pk, vk=vk)

    @classmethod
    def load(cls, keys_dir: Path | str, circuit: Optional[ShieldCircuit] = None) -> "Groth16Backend":
        """Load `pk.json` + `vk.json` written by `save`."""
        c = circuit or build_circuit()
        d = Path(keys_dir)
        try:
            pk = serialization.load_proving_key(d / "pk.json")
            vk = groth16_bn254.load_vk(serialization.load_json(d / "vk.json"))
        except FileNotFoundError as e:
            raise VerifierKeyError(
                "key files not found", circuit_id=c.circuit_id, ctx={"keys_dir": str(d)}
            ) from e
        except (ValueError, KeyError, msgspec.DecodeError, msgspec.ValidationError) as e:
            raise VerifierKeyError(
                f"corrupt key files: {e}", circuit_id=c.circuit_id, ctx={"keys_dir": str(d)}
            ) from e
        return cls(circuit=c, pk=pk, vk=vk)

    def save(self, keys_dir: Path | str) -> Dict[str, Path]:
        d = Path(keys_dir)
        return {
            "pk": serialization.save_proving_key(self.pk, d / "pk.json"),
            "vk": serialization.save_json(d / "vk.json", self._vk_json),
        }

    # ---- ProvingBackend ----

    @property
    def circuit_id(self) -> str:
        return self.circuit.circuit_id

    @property
    def vk_json(self) -> Dict[str, Any]:
        return self._vk_json

    @property
    def vk_hash(self) -> str:
        return self._vk_hash

    def public_signals_for(self, witness: Any, threshold: Optional[Any] = None) -> PublicSignals:
        if self.circuit.config.compliance and threshold is None:
            raise MalformedWitness(
                "compliance circuit requires a complianceThreshold", ctx={"circuit_id": self.circuit_id}
            )
        if not self.circuit.config.compliance and threshold is not None:
            raise MalformedWitness(
                "base circuit takes no complianceThreshold", ctx={"circuit_id": self.circuit_id}
            )
        return public_signals_of(witness, threshold)

    def generate(
        self,
        witness: Any,
        threshold: Optional[Any] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ProofBundle:
        """Witness (+ threshold for compliance) → ProofBundle. Side-effect free."""
        t0 = time.perf_counter()
        outcome = "error"
        try:
            wit: Witness = as_witness(witness)
            signals = self.public_signals_for(wit, threshold)
            values = self.circuit.solve(wit.as_inputs(), signals.as_inputs())
            self.circuit.check(values)
            if cancel is not None and cancel.is_set():
                raise GenerationCancelled("witness")
            proof = groth16_prover.prove(self.pk, self.circuit, values, cancel=cancel)
            outcome = "ok"
        except MalformedWitness as e:
            outcome = "malformed"
            log.info(
                "witness rejected",
                extra={"circuit_id": self.circuit_id, "constraint": e.constraint},
            )
            raise
        except GenerationCancelled:
            outcome = "cancelled"
            raise
        finally:
            metrics.record_generate(
                self.circuit_id, outcome=outcome, latency_s=time.perf_counter() - t0
            )

        proof_json = serialization.proof_to_json(proof)
        return ProofBundle(
            proof=msgspec.convert(proof_json, Groth16Proof),
            public_signals=signals,
            circuit_id=self.circuit_id,
            vk_hash=self._vk_hash,
        )

    async def agenerate(
        self,
        witness: Any,
        threshold: Optional[Any] = None,
        *,
        executor: Optional[Executor] = None,
    ) -> ProofBundle:
        """
        Run `generate` in a worker thread. Cancelling the awaiting task sets
        the cancel flag, which the prover observes at its next phase boundary.
        """
        loop = asyncio.get_running_loop()
        cancel = threading.Event()
        fut = loop.run_in_executor(
            executor, lambda: self.generate(witness, threshold, cancel=cancel)
        )
        # the worker may still finish with GenerationCancelled after we stop awaiting
        fut.add_done_callback(lambda f: f.cancelled() or f.exception())
        try:
            return await asyncio.shield(fut)
        except asyncio.CancelledError:
            cancel.set()
            raise

    def verify(
        self,
        vk_json: Mapping[str, Any],
        proof_json: Mapping[str, Any],
        public_signals: Sequence[Any],
    ) -> bool:
        return verify_groth16_timed(vk_json, proof_json, public_signals)

    def verify_bundle(self, bundle: ProofBundle) -> bool:
        return self.verify(self._vk_json, bundle.proof.to_json(), bundle.public_signals.to_list())

    @staticmethod
    def calldata(bundle: ProofBundle) -> SolidityCalldata:
        raw = serialization.format_proof_for_solidity(
            bundle.proof.to_json(), bundle.public_signals.to_list()
        )
        return SolidityCalldata(a=raw["a"], b=raw["b"], c=raw["c"], public_signals=raw["publicSignals"])


# =============================================================================
# Registry
# =============================================================================


class BackendRegistryError(ShieldError):
    def __init__(self, msg: str, *, kind: str, code: str = "BACKEND_REGISTRY") -> None:
        super().__init__(code=code, msg=msg, ctx={"kind": kind})


class AlreadyRegistered(BackendRegistryError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"backend kind '{kind}' already registered", kind=kind, code="ALREADY_REGISTERED")


class NotRegistered(BackendRegistryError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"backend kind '{kind}' is not registered", kind=kind, code="NOT_REGISTERED")


BackendFactory = Callable[..., ProvingBackend]


@dataclass(frozen=True)
class BackendSpec:
    kind: str
    factory: BackendFactory
    description: str = ""


_REGISTRY: Dict[str, BackendSpec] = {}
_LOCK = RLock()


def register(
    kind: str, factory: BackendFactory, *, description: str = "", overwrite: bool = False
) -> BackendSpec:
    if not kind:
        raise ValueError("kind must be a non-empty string")
    spec = BackendSpec(kind=kind, factory=factory, description=description)
    with _LOCK:
        if kind in _REGISTRY and not overwrite:
            raise AlreadyRegistered(kind)
        _REGISTRY[kind] = spec
    return spec


def unregister(kind: str, *, missing_ok: bool = False) -> None:
    with _LOCK:
        if kind not in _REGISTRY:
            if missing_ok:
                return
            raise NotRegistered(kind)
        del _REGISTRY[kind]


def get(kind: str) -> BackendSpec:
    with _LOCK:
        try:
            return _REGISTRY[kind]
        except KeyError:
            raise NotRegistered(kind) from None


def list_kinds() -> List[str]:
    with _LOCK:
        return sorted(_REGISTRY)


def create(kind: str, **kwargs: Any) -> ProvingBackend:
    """Instantiate a backend of `kind` via its registered factory."""
    return get(kind).factory(**kwargs)


def _groth16_factory(
    *, circuit: Optional[ShieldCircuit] = None, keys_dir: Optional[Path | str] = None
) -> Groth16Backend:
    if keys_dir is not None:
        return Groth16Backend.load(keys_dir, circuit)
    return Groth16Backend.from_setup(circuit)


register(
    GROTH16_KIND,
    _groth16_factory,
    description="Groth16 over BN254, snarkjs-compatible artifacts",
)


__all__ = [
    "GROTH16_KIND",
    "VK_FORMAT",
    "ProvingBackend",
    "Groth16Backend",
    "verify_groth16_timed",
    "BackendRegistryError",
    "AlreadyRegistered",
    "NotRegistered",
    "BackendSpec",
    "register",
    "unregister",
    "get",
    "list_kinds",
    "create",
]
