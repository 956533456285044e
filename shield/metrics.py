"""
shield.metrics
--------------

Prometheus metrics for proof generation, verification and the dispatch gate.

Tracks:
- proof generation latency and outcomes per circuit
- verification verdicts and latency
- dispatch outcomes (delivered / replay / invalid / vk_mismatch / transport_failure)
- nullifier ledger size
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

log = logging.getLogger(__name__)

_NS = "shield"


def _m(name: str) -> str:
    return f"{_NS}_{name}"


# Proving takes seconds, verifying around one.
_LAT_BUCKETS_SLOW = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0)

PROOF_GENERATE_TOTAL = Counter(
    _m("proof_generate_total"),
    "Proof generation attempts by circuit and outcome.",
    labelnames=("circuit", "outcome"),  # ok|malformed|cancelled|error
)

PROOF_GENERATE_SECONDS = Histogram(
    _m("proof_generate_seconds"),
    "Wall time to produce a proof (witness solve + prover).",
    buckets=_LAT_BUCKETS_SLOW,
    labelnames=("circuit",),
)

VERIFY_TOTAL = Counter(
    _m("verify_total"),
    "Proof verifications by verdict.",
    labelnames=("verdict",),  # ok|fail
)

VERIFY_SECONDS = Histogram(
    _m("verify_seconds"),
    "Latency of a Groth16 pairing check.",
    buckets=_LAT_BUCKETS_SLOW,
)

DISPATCH_TOTAL = Counter(
    _m("dispatch_total"),
    "Dispatch gate outcomes.",
    labelnames=("outcome",),
)

LEDGER_SIZE = Gauge(
    _m("nullifier_ledger_size"),
    "Nullifier hashes recorded by the gate.",
)


def record_generate(circuit: str, *, outcome: str, latency_s: float | None = None) -> None:
    PROOF_GENERATE_TOTAL.labels(circuit=circuit, outcome=outcome).inc()
    if latency_s is not None:
        PROOF_GENERATE_SECONDS.labels(circuit=circuit).observe(max(0.0, float(latency_s)))


def record_verify(*, ok: bool, latency_s: float | None = None) -> None:
    VERIFY_TOTAL.labels(verdict="ok" if ok else "fail").inc()
    if latency_s is not None:
        VERIFY_SECONDS.observe(max(0.0, float(latency_s)))


def record_dispatch(outcome: str) -> None:
    DISPATCH_TOTAL.labels(outcome=outcome).inc()


def set_ledger_size(n: int) -> None:
    LEDGER_SIZE.set(max(0, int(n)))


@contextmanager
def timer() -> Iterator[list]:
    """
    Yield a one-slot list that holds the elapsed seconds after the block:

        with timer() as t:
            work()
        record_verify(ok=True, latency_s=t[0])
    """
    out = [0.0]
    t0 = time.perf_counter()
    try:
        yield out
    finally:
        out[0] = time.perf_counter() - t0


_server_lock = threading.Lock()
_server_port: int | None = None


def start_exporter(port: int, addr: str = "0.0.0.0") -> bool:
    """
    Start the /metrics HTTP server once per process. `port <= 0` disables it.
    Returns True if a server is (or was already) running.
    """
    global _server_port
    if port <= 0:
        return False
    with _server_lock:
        if _server_port is not None:
            return True
        start_http_server(port, addr=addr)
        _server_port = port
    log.info("metrics exporter listening", extra={"addr": addr, "port": port})
    return True


__all__ = [
    "PROOF_GENERATE_TOTAL",
    "PROOF_GENERATE_SECONDS",
    "VERIFY_TOTAL",
    "VERIFY_SECONDS",
    "DISPATCH_TOTAL",
    "LEDGER_SIZE",
    "record_generate",
    "record_verify",
    "record_dispatch",
    "set_ledger_size",
    "timer",
    "start_exporter",
]
