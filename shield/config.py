"""
Shield configuration.

One flat dataclass covering the circuit variant, storage, keys, transport,
logging and metrics. Everything has a default; values can be overridden from
a JSON or YAML file and from environment variables.

Environment variables (all optional):

  # Circuit
  SHIELD_VARIANT=base                  # base | compliance
  SHIELD_RANGE_BITS=64                 # 1..248
  SHIELD_CIRCUIT_VERSION=1

  # Storage & keys
  SHIELD_STORE_URL=memory:             # memory: | sqlite:///path/shield.db
  SHIELD_KEYS_DIR=./keys               # pk.json / vk.json
  SHIELD_VK_REGISTRY=./keys/registry.json

  # Transport
  SHIELD_TRANSPORT_URL=                # empty → loopback, else relayer base URL
  SHIELD_TRANSPORT_TIMEOUT=10
  SHIELD_TRANSPORT_RETRIES=3

  # Observability
  SHIELD_LOG_LEVEL=INFO
  SHIELD_LOG_FORMAT=text               # text | json
  SHIELD_METRICS_PORT=0                # 0 disables the exporter

  # Poseidon
  SHIELD_POSEIDON_PARAMS=a.json:b.json # parameter files loaded over the defaults

A file is picked up via `SHIELD_CONFIG=/path/to/shield.(json|yaml|yml)`.
File values override defaults; environment overrides the file.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from shield.errors import ConfigError
from shield.version import PROTOCOL_VERSION
from shield.zk.circuit import RANGE_BITS, CircuitConfig, Variant
from shield.zk.poseidon import load_params_json

PREFIX = "SHIELD_"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
_LOG_FORMATS = ("text", "json")


@dataclass(frozen=True)
class ShieldConfig:
    variant: str = Variant.BASE.value
    range_bits: int = RANGE_BITS
    circuit_version: int = PROTOCOL_VERSION

    store_url: str = "memory:"
    keys_dir: str = "./keys"
    vk_registry: str = "./keys/registry.json"

    transport_url: str = ""
    transport_timeout: float = 10.0
    transport_retries: int = 3

    log_level: str = "INFO"
    log_format: str = "text"
    metrics_port: int = 0

    poseidon_params: Tuple[str, ...] = field(default_factory=tuple)

    def validate(self) -> None:
        if self.variant not in {v.value for v in Variant}:
            raise ConfigError("variant must be 'base' or 'compliance'", key="variant", value=self.variant)
        if not 1 <= self.range_bits <= 248:
            raise ConfigError("range_bits must be in 1..248", key="range_bits", value=self.range_bits)
        if self.circuit_version < 1:
            raise ConfigError("circuit_version must be >= 1", key="circuit_version", value=self.circuit_version)
        if not self.store_url:
            raise ConfigError("store_url must not be empty", key="store_url", value=self.store_url)
        if self.transport_timeout <= 0:
            raise ConfigError("transport_timeout must be positive", key="transport_timeout", value=self.transport_timeout)
        if self.transport_retries < 0:
            raise ConfigError("transport_retries must be >= 0", key="transport_retries", value=self.transport_retries)
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(_LOG_LEVELS)}", key="log_level", value=self.log_level)
        if self.log_format not in _LOG_FORMATS:
            raise ConfigError("log_format must be 'text' or 'json'", key="log_format", value=self.log_format)
        if not 0 <= self.metrics_port <= 65535:
            raise ConfigError("metrics_port must be in 0..65535", key="metrics_port", value=self.metrics_port)

    def circuit_config(self) -> CircuitConfig:
        return CircuitConfig(Variant(self.variant), self.range_bits, self.circuit_version)

    @property
    def circuit_id(self) -> str:
        return self.circuit_config().circuit_id

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["poseidon_params"] = list(self.poseidon_params)
        return d


# -------------------------- Coercion --------------------------


def _as_int(key: str, v: Any) -> int:
    if isinstance(v, bool):
        raise ConfigError(f"invalid int for {key}", key=key, value=v)
    if isinstance(v, int):
        return v
    try:
        return int(str(v).strip().replace("_", ""), 0)
    except ValueError as e:
        raise ConfigError(f"invalid int for {key}", key=key, value=v) from e


def _as_float(key: str, v: Any) -> float:
    try:
        return float(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid float for {key}", key=key, value=v) from e


def _as_paths(key: str, v: Any) -> Tuple[str, ...]:
    if isinstance(v, str):
        return tuple(p for p in v.split(os.pathsep) if p)
    if isinstance(v, (list, tuple)):
        return tuple(str(p) for p in v if p)
    raise ConfigError(f"invalid path list for {key}", key=key, value=v)


_COERCE = {
    "variant": lambda k, v: str(v).strip().lower(),
    "range_bits": _as_int,
    "circuit_version": _as_int,
    "store_url": lambda k, v: str(v).strip(),
    "keys_dir": lambda k, v: str(v),
    "vk_registry": lambda k, v: str(v),
    "transport_url": lambda k, v: str(v).strip(),
    "transport_timeout": _as_float,
    "transport_retries": _as_int,
    "log_level": lambda k, v: str(v).strip().upper(),
    "log_format": lambda k, v: str(v).strip().lower(),
    "metrics_port": _as_int,
    "poseidon_params": _as_paths,
}


def _overlay(base: ShieldConfig, values: Mapping[str, Any]) -> ShieldConfig:
    changes: Dict[str, Any] = {}
    for key, raw in values.items():
        if key not in _COERCE:
            raise ConfigError(f"unknown config key {key!r}", key=key, value=raw)
        changes[key] = _COERCE[key](key, raw)
    return replace(base, **changes)


# -------------------------- Loaders --------------------------


def from_env(
    base: Optional[ShieldConfig] = None,
    prefix: str = PREFIX,
    environ: Optional[Mapping[str, str]] = None,
) -> ShieldConfig:
    """Layer SHIELD_* variables over `base` (defaults if None). Empty values are ignored."""
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for key in _COERCE:
        v = env.get(prefix + key.upper())
        if v is not None and v.strip() != "":
            values[key] = v
    cfg = _overlay(base or ShieldConfig(), values)
    cfg.validate()
    return cfg


def from_file(path: str | os.PathLike[str]) -> ShieldConfig:
    """Load a JSON or YAML file of the same keys as the dataclass fields."""
    p = Path(path)
    if not p.exists():
        raise ConfigError("config file not found", key="SHIELD_CONFIG", value=str(p))
    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text or "{}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot parse config file: {e}", key="SHIELD_CONFIG", value=str(p)) from e
    if not isinstance(data, dict):
        raise ConfigError("config file must hold a mapping", key="SHIELD_CONFIG", value=str(p))
    cfg = _overlay(ShieldConfig(), data)
    cfg.validate()
    return cfg


def load(environ: Optional[Mapping[str, str]] = None) -> ShieldConfig:
    """
    Precedence: environment > $SHIELD_CONFIG file > defaults.
    """
    env = os.environ if environ is None else environ
    file_path = env.get(PREFIX + "CONFIG")
    base = from_file(file_path) if file_path else ShieldConfig()
    return from_env(base=base, environ=env)


def load_poseidon_params(cfg: ShieldConfig) -> None:
    """Register every configured Poseidon parameter file (replaces the defaults for that width)."""
    for path in cfg.poseidon_params:
        try:
            load_params_json(path)
        except (OSError, KeyError, ValueError) as e:
            raise ConfigError(f"cannot load Poseidon parameters: {e}", key="poseidon_params", value=path) from e


def pretty(cfg: Optional[ShieldConfig] = None) -> str:
    return json.dumps((cfg or load()).to_dict(), indent=2, sort_keys=True)


__all__ = [
    "PREFIX",
    "ShieldConfig",
    "from_env",
    "from_file",
    "load",
    "load_poseidon_params",
    "pretty",
]
