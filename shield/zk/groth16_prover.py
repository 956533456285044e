"""
Groth16 trusted setup and prover over BN254.

Setup (circuit-specific):
    QAP over the radix-2 domain holding every constraint plus one binding row
    per public wire (A = w_i, B = C = 0), which keeps the public-input
    polynomials linearly independent. For every wire i the column polynomials
    A_i, B_i, C_i are evaluated at the secret point tau through the Lagrange
    basis, then committed:

        a_query[i]  = A_i(tau)·G1      b_g1_query[i] = B_i(tau)·G1
        b_g2_query[i] = B_i(tau)·G2
        IC[i]       = (beta·A_i + alpha·B_i + C_i)(tau) / gamma · G1   public i
        l_query[i]  = (beta·A_i + alpha·B_i + C_i)(tau) / delta · G1   private i
        h_query[k]  = tau^k · Z(tau) / delta · G1

    The toxic waste (alpha, beta, gamma, delta, tau) is drawn from `secrets`
    and dropped when `setup` returns.

Prove:
    A(X), B(X), C(X) are interpolated from the row evaluations, moved to the
    coset q·H, and H = (A·B - C) / Z is recovered with an inverse coset FFT.
    Fresh blinding r, s make every proof unlinkable.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from py_ecc.optimized_bn128 import G1, G2, Z1, Z2, add, multiply, neg

from shield.errors import GenerationCancelled, MalformedWitness, VerifierKeyError

from .circuit import ShieldCircuit
from .curve import FixedBaseTable, msm
from .domain import EvaluationDomain
from .field import R, inv
from .groth16_bn254 import Proof, VerifyingKey
from .pairing_bn254 import G1Point, G2Point
from .r1cs import ConstraintSystem, LinearCombination

log = logging.getLogger("shield.zk.prover")

Row = Tuple[LinearCombination, LinearCombination, LinearCombination]
RandBelow = Callable[[int], int]


@dataclass
class ProvingKey:
    circuit_id: str
    r1cs_digest: str
    domain_size: int
    num_public: int  # excluding the constant wire
    alpha_g1: G1Point
    beta_g1: G1Point
    delta_g1: G1Point
    beta_g2: G2Point
    delta_g2: G2Point
    a_query: List[G1Point]
    b_g1_query: List[G1Point]
    b_g2_query: List[G2Point]
    l_query: List[G1Point]
    h_query: List[G1Point]

    @property
    def num_wires(self) -> int:
        return len(self.a_query)


def qap_rows(cs: ConstraintSystem) -> List[Row]:
    """Constraint rows followed by one binding row per public wire (incl. the constant)."""
    rows: List[Row] = [(k.a, k.b, k.c) for k in cs.constraints]
    empty = LinearCombination()
    for i in range(cs.num_public + 1):
        rows.append((LinearCombination.wire(i), empty, empty))
    return rows


def _columns_at(rows: Sequence[Row], lagrange: Sequence[int], num_wires: int) -> Tuple[List[int], List[int], List[int]]:
    at = [0] * num_wires
    bt = [0] * num_wires
    ct = [0] * num_wires
    for lj, (a, b, c) in zip(lagrange, rows):
        for i, coef in a.terms.items():
            at[i] += coef * lj
        for i, coef in b.terms.items():
            bt[i] += coef * lj
        for i, coef in c.terms.items():
            ct[i] += coef * lj
    return [x % R for x in at], [x % R for x in bt], [x % R for x in ct]


def _nonzero(randbelow: RandBelow) -> int:
    while True:
        x = randbelow(R)
        if x:
            return x


def setup(
    circuit: ShieldCircuit, *, randbelow: RandBelow = secrets.randbelow
) -> Tuple[ProvingKey, VerifyingKey]:
    """Circuit-specific Groth16 key generation."""
    cs = circuit.cs
    rows = qap_rows(cs)
    domain = EvaluationDomain.for_size(len(rows))
    t0 = time.perf_counter()

    tau = _nonzero(randbelow)
    while domain.vanishing_at(tau) == 0:
        tau = _nonzero(randbelow)
    alpha, beta, gamma, delta = (_nonzero(randbelow) for _ in range(4))

    lagrange = domain.lagrange_at(tau)
    at, bt, ct = _columns_at(rows, lagrange, cs.num_wires)
    gamma_inv, delta_inv = inv(gamma), inv(delta)
    npub = cs.num_public + 1

    combined = [(beta * at[i] + alpha * bt[i] + ct[i]) % R for i in range(cs.num_wires)]
    ic_scalars = [combined[i] * gamma_inv % R for i in range(npub)]
    l_scalars = [combined[i] * delta_inv % R for i in range(npub, cs.num_wires)]

    zt_delta = domain.vanishing_at(tau) * delta_inv % R
    h_scalars = []
    acc = zt_delta
    for _ in range(domain.size - 1):
        h_scalars.append(acc)
        acc = acc * tau % R

    g1 = FixedBaseTable(G1, Z1)
    g2 = FixedBaseTable(G2, Z2)

    pk = ProvingKey(
        circuit_id=circuit.circuit_id,
        r1cs_digest=circuit.r1cs_digest,
        domain_size=domain.size,
        num_public=cs.num_public,
        alpha_g1=g1.mul(alpha),
        beta_g1=g1.mul(beta),
        delta_g1=g1.mul(delta),
        beta_g2=g2.mul(beta),
        delta_g2=g2.mul(delta),
        a_query=g1.batch_mul(at),
        b_g1_query=g1.batch_mul(bt),
        b_g2_query=g2.batch_mul(bt),
        l_query=g1.batch_mul(l_scalars),
        h_query=g1.batch_mul(h_scalars),
    )
    vk = VerifyingKey(
        alpha1=pk.alpha_g1,
        beta2=pk.beta_g2,
        gamma2=g2.mul(gamma),
        delta2=pk.delta_g2,
        IC=tuple(g1.batch_mul(ic_scalars)),
    )
    log.info(
        "groth16 setup done",
        extra={
            "circuit_id": circuit.circuit_id,
            "constraints": cs.num_constraints,
            "domain": domain.size,
            "seconds": round(time.perf_counter() - t0, 3),
        },
    )
    return pk, vk


def _checkpoint(cancel: Optional[threading.Event], phase: str) -> None:
    if cancel is not None and cancel.is_set():
        raise GenerationCancelled(phase)


def quotient(cs: ConstraintSystem, domain: EvaluationDomain, values: Sequence[int]) -> List[int]:
    """Coefficients of H = (A·B - C) / Z for a satisfying assignment."""
    rows = qap_rows(cs)
    a_ev = [a.evaluate(values) for a, _, _ in rows]
    b_ev = [b.evaluate(values) for _, b, _ in rows]
    c_ev = [c.evaluate(values) for _, _, c in rows]
    a_s = domain.coset_fft(domain.ifft(a_ev))
    b_s = domain.coset_fft(domain.ifft(b_ev))
    c_s = domain.coset_fft(domain.ifft(c_ev))
    h_s = domain.divide_by_vanishing_on_coset(
        [(x * y - z) % R for x, y, z in zip(a_s, b_s, c_s)]
    )
    h = domain.coset_ifft(h_s)
    if h[-1] != 0:
        # deg(H) <= n - 2 holds only when every row is satisfied
        raise MalformedWitness("assignment does not divide the vanishing polynomial")
    return h[:-1]


def prove(
    pk: ProvingKey,
    circuit: ShieldCircuit,
    values: Sequence[int],
    *,
    randbelow: RandBelow = secrets.randbelow,
    cancel: Optional[threading.Event] = None,
) -> Proof:
    """
    Produce a proof for a full, already checked wire assignment.
    Observes `cancel` between phases.
    """
    cs = circuit.cs
    if pk.r1cs_digest != circuit.r1cs_digest or pk.circuit_id != circuit.circuit_id:
        raise VerifierKeyError(
            "proving key was generated for a different circuit",
            circuit_id=circuit.circuit_id,
            ctx={"pk_circuit_id": pk.circuit_id},
        )
    if len(values) != pk.num_wires:
        raise MalformedWitness("assignment length does not match the proving key")

    domain = EvaluationDomain.for_size(len(qap_rows(cs)))
    if domain.size != pk.domain_size:
        raise VerifierKeyError("proving key domain size mismatch", circuit_id=pk.circuit_id)

    _checkpoint(cancel, "quotient")
    h = quotient(cs, domain, values)

    r = randbelow(R)
    s = randbelow(R)

    _checkpoint(cancel, "msm_a")
    A = add(add(pk.alpha_g1, msm(pk.a_query, values, Z1)), multiply(pk.delta_g1, r))

    _checkpoint(cancel, "msm_b")
    B2 = add(add(pk.beta_g2, msm(pk.b_g2_query, values, Z2)), multiply(pk.delta_g2, s))
    B1 = add(add(pk.beta_g1, msm(pk.b_g1_query, values, Z1)), multiply(pk.delta_g1, s))

    _checkpoint(cancel, "msm_c")
    npub = pk.num_public + 1
    C = msm(pk.l_query, values[npub:], Z1)
    C = add(C, msm(pk.h_query, h, Z1))
    C = add(C, multiply(A, s))
    C = add(C, multiply(B1, r))
    C = add(C, neg(multiply(pk.delta_g1, r * s % R)))

    return Proof(A=A, B=B2, C=C)


__all__ = ["ProvingKey", "qap_rows", "setup", "quotient", "prove"]
