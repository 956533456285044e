from __future__ import annotations

import json
import os

import pytest

from shield.config import ShieldConfig, from_env, from_file, load, load_poseidon_params, pretty
from shield.errors import ConfigError, ErrorCode


def test_defaults_are_valid():
    cfg = ShieldConfig()
    cfg.validate()
    assert cfg.circuit_id == "shield_privacy_base_r64@1"
    assert cfg.store_url == "memory:"
    assert cfg.poseidon_params == ()


def test_env_overrides():
    cfg = from_env(
        environ={
            "SHIELD_VARIANT": "Compliance",
            "SHIELD_RANGE_BITS": "32",
            "SHIELD_TRANSPORT_TIMEOUT": "2.5",
            "SHIELD_METRICS_PORT": "0x2382",
            "SHIELD_LOG_LEVEL": "debug",
            "SHIELD_POSEIDON_PARAMS": os.pathsep.join(["a.json", "", "b.json"]),
            "SHIELD_STORE_URL": "",
        }
    )
    assert cfg.variant == "compliance"
    assert cfg.range_bits == 32
    assert cfg.transport_timeout == 2.5
    assert cfg.metrics_port == 9090
    assert cfg.log_level == "DEBUG"
    assert cfg.poseidon_params == ("a.json", "b.json")
    assert cfg.store_url == "memory:"
    assert cfg.circuit_id == "shield_privacy_compliance_r32@1"


@pytest.mark.parametrize(
    "env",
    [
        {"SHIELD_VARIANT": "gold"},
        {"SHIELD_RANGE_BITS": "0"},
        {"SHIELD_RANGE_BITS": "sixty-four"},
        {"SHIELD_TRANSPORT_TIMEOUT": "-1"},
        {"SHIELD_TRANSPORT_RETRIES": "-1"},
        {"SHIELD_LOG_LEVEL": "LOUD"},
        {"SHIELD_LOG_FORMAT": "xml"},
        {"SHIELD_METRICS_PORT": "70000"},
        {"SHIELD_CIRCUIT_VERSION": "0"},
    ],
)
def test_invalid_env_values(env):
    with pytest.raises(ConfigError) as ei:
        from_env(environ=env)
    assert ei.value.code == ErrorCode.CONFIG
    assert ei.value.ctx["key"]


def test_yaml_file_and_env_precedence(tmp_path):
    p = tmp_path / "shield.yaml"
    p.write_text("variant: compliance\nrange_bits: 16\nstore_url: sqlite:///x.db\n")
    assert from_file(p).range_bits == 16

    cfg = load(environ={"SHIELD_CONFIG": str(p), "SHIELD_RANGE_BITS": "24"})
    assert cfg.variant == "compliance"
    assert cfg.range_bits == 24
    assert cfg.store_url == "sqlite:///x.db"


def test_json_file(tmp_path):
    p = tmp_path / "shield.json"
    p.write_text(json.dumps({"transport_url": "http://relayer:8080", "poseidon_params": ["p.json"]}))
    cfg = from_file(p)
    assert cfg.transport_url == "http://relayer:8080"
    assert cfg.poseidon_params == ("p.json",)
    assert json.loads(pretty(cfg))["poseidon_params"] == ["p.json"]


@pytest.mark.parametrize(
    "name, content",
    [
        ("bad.yaml", "variant: [unclosed\n"),
        ("bad.json", "{nope"),
        ("list.yaml", "- a\n- b\n"),
        ("unknown.json", json.dumps({"colour": "blue"})),
    ],
)
def test_bad_files(tmp_path, name, content):
    p = tmp_path / name
    p.write_text(content)
    with pytest.raises(ConfigError):
        from_file(p)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load(environ={"SHIELD_CONFIG": str(tmp_path / "absent.yaml")})


def test_bad_poseidon_params_path(tmp_path):
    cfg = ShieldConfig(poseidon_params=(str(tmp_path / "missing.json"),))
    with pytest.raises(ConfigError) as ei:
        load_poseidon_params(cfg)
    assert ei.value.ctx["key"] == "poseidon_params"
