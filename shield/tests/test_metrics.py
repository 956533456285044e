from __future__ import annotations

import time

from prometheus_client import REGISTRY

from shield import metrics


def _value(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_counters_and_gauge():
    before = _value("shield_verify_total", {"verdict": "fail"})
    metrics.record_verify(ok=False, latency_s=0.01)
    assert _value("shield_verify_total", {"verdict": "fail"}) == before + 1

    metrics.set_ledger_size(-3)
    assert _value("shield_nullifier_ledger_size") == 0
    metrics.set_ledger_size(12)
    assert _value("shield_nullifier_ledger_size") == 12


def test_timer_measures_block():
    with metrics.timer() as t:
        time.sleep(0.01)
    assert t[0] >= 0.005


def test_exporter_disabled_for_port_zero():
    assert metrics.start_exporter(0) is False
