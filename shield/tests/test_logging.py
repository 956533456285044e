from __future__ import annotations

import io
import json
import logging

import pytest

from shield import logging as slog


def _lines(buf: io.StringIO):
    return [line for line in buf.getvalue().splitlines() if line]


def test_json_lines_carry_context_and_extras():
    buf = io.StringIO()
    slog.configure(json=True, level="DEBUG", stream=buf)
    log = logging.getLogger("shield.gate")
    with slog.trace_scope("t-1", component="gate"):
        log.info("dispatched", extra={"nullifier": "0xabc", "blob": b"\x01"})
    log.debug("outside")

    first, second = (json.loads(line) for line in _lines(buf))
    assert first["msg"] == "dispatched"
    assert first["logger"] == "shield.gate"
    assert first["trace_id"] == "t-1"
    assert first["component"] == "gate"
    assert first["nullifier"] == "0xabc"
    assert first["blob"] == "01"
    assert "trace_id" not in second


def test_text_format_and_level_filter():
    buf = io.StringIO()
    slog.configure(json=False, level="WARNING", stream=buf)
    log = logging.getLogger("shield.vk_registry")
    log.info("hidden")
    with slog.trace_scope(component="registry"):
        log.warning("rotated", extra={"circuit_id": "c1"})
    (line,) = _lines(buf)
    assert "| WARN" in line
    assert "component=registry" in line
    assert line.endswith("rotated circuit_id=c1")


def test_exceptions_are_rendered():
    buf = io.StringIO()
    slog.configure(json=True, level="INFO", stream=buf)
    try:
        raise ValueError("boom")
    except ValueError:
        logging.getLogger("shield").exception("failed")
    assert "ValueError: boom" in json.loads(_lines(buf)[0])["err"]


def test_bind_unbind_and_scope_restore():
    slog.clear_context()
    slog.bind(circuit_id="c1")
    with slog.trace_scope() as tid:
        assert slog.context()["trace_id"] == tid
        assert slog.context()["circuit_id"] == "c1"
    assert "trace_id" not in slog.context()
    slog.unbind("circuit_id")
    assert slog.context() == {}


def test_short_hex_and_levels():
    assert slog.short_hex("0x" + "ab" * 32, 4) == "0xabab…"
    assert slog.short_hex(1, 64) == "0x" + "0" * 63 + "1"
    assert slog.coerce_level("debug") == logging.DEBUG
    with pytest.raises(ValueError):
        slog.coerce_level("chatty")
