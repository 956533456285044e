"""
shield - command-line interface.

Commands:
  inputs   print the public/private input JSON for a witness
  setup    compile a circuit variant, run the trusted setup, write pk.json /
           vk.json and register the verifier key
  prove    generate a proof bundle (and optionally Solidity calldata)
  verify   verify a bundle against a vk.json
  demo     setup → prove → dispatch over the loopback transport → replay

Configuration comes from SHIELD_* environment variables and an optional
SHIELD_CONFIG file (see shield.config); flags override both.

Examples:
  shield inputs --variant compliance --amount 7500 --threshold 10000
  shield setup --variant base --keys-dir ./keys
  shield prove --keys-dir ./keys --out bundle.json --calldata-out calldata.json
  shield verify bundle.json --vk ./keys/vk.json
  shield demo
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import msgspec
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shield import config as shield_config
from shield import logging as slog
from shield import metrics
from shield.commitment import public_signals_of, random_field_element
from shield.errors import ReplayedNullifier, ShieldError
from shield.gate import DispatchGate
from shield.ledger import open_ledger
from shield.transport import LoopbackTransport
from shield.types import ProofBundle, Witness
from shield.version import __version__
from shield.vk_registry import VkRegistry, make_record
from shield.zk.backend import GROTH16_KIND, VK_FORMAT, Groth16Backend, verify_groth16_timed
from shield.zk.circuit import CircuitConfig, Variant, build_circuit
from shield.zk.serialization import load_json, save_json

app = typer.Typer(
    name="shield",
    help="Private message gate: Poseidon commitments, Groth16/BN254 proofs, nullifier-guarded dispatch",
    no_args_is_help=True,
    add_completion=False,
)

# Reference scenario
REF_SECRET = 123456789
REF_NULLIFIER = 987654321
REF_RECIPIENT = 555555555
REF_AMOUNT = 1000
REF_COMPLIANCE_AMOUNT = 7500
REF_THRESHOLD = 10000

DEMO_SENDER = "0x" + "11" * 20
DEMO_DESTINATION = "0x" + "22" * 20
DEMO_CHAIN_ID = 2


class _State:
    def __init__(self) -> None:
        self.cfg: Optional[shield_config.ShieldConfig] = None


_state = _State()


def _console() -> Console:
    return Console()


def _die(msg: str, code: int = 1) -> None:
    typer.echo(msg.rstrip(), err=True)
    raise typer.Exit(code)


def _cfg() -> shield_config.ShieldConfig:
    if _state.cfg is None:
        try:
            _state.cfg = shield_config.load()
        except ShieldError as e:
            _die(f"config error: {e}", 2)
    return _state.cfg  # type: ignore[return-value]


def _circuit_config(variant: Optional[str], range_bits: Optional[int]) -> CircuitConfig:
    cfg = _cfg()
    try:
        return CircuitConfig(
            Variant(variant or cfg.variant),
            range_bits if range_bits is not None else cfg.range_bits,
            cfg.circuit_version,
        )
    except ValueError as e:
        _die(f"invalid circuit parameters: {e}", 2)
        raise


def _witness(secret: Optional[str], nullifier: Optional[str], recipient: Optional[str], amount: Optional[str],
             *, default_amount: int, fresh: bool) -> Dict[str, Any]:
    if fresh:
        base: Dict[str, Any] = {
            "secret": random_field_element(),
            "nullifier": random_field_element(),
            "recipient": random_field_element(),
            "amount": default_amount,
        }
    else:
        base = {
            "secret": REF_SECRET,
            "nullifier": REF_NULLIFIER,
            "recipient": REF_RECIPIENT,
            "amount": default_amount,
        }
    for k, v in (("secret", secret), ("nullifier", nullifier), ("recipient", recipient), ("amount", amount)):
        if v is not None:
            base[k] = v
    return base


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override SHIELD_LOG_LEVEL"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--log-text", help="Override SHIELD_LOG_FORMAT"),
    metrics_port: Optional[int] = typer.Option(None, "--metrics-port", help="Serve Prometheus metrics on this port"),
) -> None:
    """
    shield CLI. Configuration is resolved as flags > SHIELD_* environment >
    SHIELD_CONFIG file > defaults.
    """
    _state.cfg = None
    cfg = _cfg()
    try:
        shield_config.load_poseidon_params(cfg)
    except ShieldError as e:
        _die(f"config error: {e}", 2)
    try:
        slog.configure(
            json=log_json if log_json is not None else cfg.log_format == "json",
            level=log_level or cfg.log_level,
        )
    except ValueError as e:
        _die(str(e), 2)
    port = metrics_port if metrics_port is not None else cfg.metrics_port
    if port:
        metrics.start_exporter(port)


@app.command()
def version() -> None:
    """Print the package version."""
    typer.echo(__version__)


@app.command()
def inputs(
    variant: Optional[str] = typer.Option(None, "--variant", help="base | compliance"),
    secret: Optional[str] = typer.Option(None, "--secret"),
    nullifier: Optional[str] = typer.Option(None, "--nullifier"),
    recipient: Optional[str] = typer.Option(None, "--recipient"),
    amount: Optional[str] = typer.Option(None, "--amount"),
    threshold: Optional[str] = typer.Option(None, "--threshold", help="complianceThreshold (compliance only)"),
    fresh: bool = typer.Option(False, "--random", help="Fresh random secret, nullifier and recipient"),
) -> None:
    """Print {"private": ..., "public": ...} for a witness (reference scenario by default)."""
    cc = _circuit_config(variant, None)
    default_amount = REF_COMPLIANCE_AMOUNT if cc.compliance else REF_AMOUNT
    w = _witness(secret, nullifier, recipient, amount, default_amount=default_amount, fresh=fresh)
    thr: Optional[Any] = None
    if cc.compliance:
        thr = threshold if threshold is not None else REF_THRESHOLD
    elif threshold is not None:
        _die("--threshold only applies to the compliance variant", 2)
    try:
        signals = public_signals_of(w, thr)
    except ShieldError as e:
        _die(f"invalid witness: {e}")
        raise
    out = {
        "circuitId": cc.circuit_id,
        "private": {k: str(v) for k, v in w.items()},
        "public": dict(zip(cc.public_signal_names, signals.to_strings())),
        "publicSignals": signals.to_strings(),
    }
    typer.echo(json.dumps(out, indent=2))


@app.command()
def setup(
    variant: Optional[str] = typer.Option(None, "--variant", help="base | compliance"),
    range_bits: Optional[int] = typer.Option(None, "--range-bits"),
    keys_dir: Optional[Path] = typer.Option(None, "--keys-dir"),
    registry: Optional[Path] = typer.Option(None, "--registry", help="VK registry JSON path"),
    rotate: bool = typer.Option(True, "--rotate/--no-rotate", help="Make the new key current"),
) -> None:
    """Compile, run the trusted setup, write keys and register the verifier key."""
    cfg = _cfg()
    cc = _circuit_config(variant, range_bits)
    out_dir = keys_dir or Path(cfg.keys_dir)
    reg_path = registry or Path(cfg.vk_registry)
    console = _console()

    circuit = build_circuit(cc)
    with console.status(f"trusted setup for {cc.circuit_id} …"):
        backend = Groth16Backend.from_setup(circuit)
    paths = backend.save(out_dir)

    try:
        reg = VkRegistry(reg_path)
        record = reg.register(
            make_record(
                backend.circuit_id,
                backend.vk_json,
                kind=GROTH16_KIND,
                vk_format=VK_FORMAT,
                meta={"r1cs_digest": circuit.r1cs_digest, **circuit.cs.stats()},
            ),
            overwrite=True,
        )
        if rotate:
            reg.rotate(backend.circuit_id)
    except ShieldError as e:
        _die(f"registry error: {e}")
        raise

    table = Table(title="trusted setup", show_header=False)
    table.add_row("circuit", backend.circuit_id)
    table.add_row("constraints", str(circuit.cs.num_constraints))
    table.add_row("pk", str(paths["pk"]))
    table.add_row("vk", str(paths["vk"]))
    table.add_row("registry", str(reg_path))
    table.add_row("vk hash", record.vk_hash)
    table.add_row("current", "yes" if rotate else "no")
    console.print(table)


@app.command()
def prove(
    variant: Optional[str] = typer.Option(None, "--variant", help="base | compliance"),
    range_bits: Optional[int] = typer.Option(None, "--range-bits"),
    keys_dir: Optional[Path] = typer.Option(None, "--keys-dir"),
    secret: Optional[str] = typer.Option(None, "--secret"),
    nullifier: Optional[str] = typer.Option(None, "--nullifier"),
    recipient: Optional[str] = typer.Option(None, "--recipient"),
    amount: Optional[str] = typer.Option(None, "--amount"),
    threshold: Optional[str] = typer.Option(None, "--threshold"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the bundle here instead of stdout"),
    calldata_out: Optional[Path] = typer.Option(None, "--calldata-out", help="Also write Solidity calldata"),
) -> None:
    """Generate a proof bundle from witness values (reference scenario by default)."""
    cfg = _cfg()
    cc = _circuit_config(variant, range_bits)
    default_amount = REF_COMPLIANCE_AMOUNT if cc.compliance else REF_AMOUNT
    w = _witness(secret, nullifier, recipient, amount, default_amount=default_amount, fresh=False)
    thr = (threshold if threshold is not None else REF_THRESHOLD) if cc.compliance else threshold

    try:
        backend = Groth16Backend.load(keys_dir or Path(cfg.keys_dir), build_circuit(cc))
        bundle = backend.generate(w, thr)
    except ShieldError as e:
        _die(f"proof generation failed: {e}")
        raise

    data = bundle.to_json()
    if out is not None:
        save_json(out, data)
        typer.echo(f"bundle written to {out}", err=True)
    else:
        typer.echo(json.dumps(data, indent=2))
    if calldata_out is not None:
        cd = Groth16Backend.calldata(bundle)
        save_json(calldata_out, {"a": cd.a, "b": cd.b, "c": cd.c, "input": cd.public_signals})
        typer.echo(f"calldata written to {calldata_out}", err=True)


@app.command()
def verify(
    bundle_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Proof bundle JSON"),
    vk: Optional[Path] = typer.Option(None, "--vk", help="vk.json (default: <keys_dir>/vk.json)"),
) -> None:
    """Exit 0 if the bundle verifies, 1 otherwise."""
    cfg = _cfg()
    vk_path = vk or Path(cfg.keys_dir) / "vk.json"
    try:
        vk_json = load_json(vk_path)
        bundle = ProofBundle.from_json(load_json(bundle_path))
    except (OSError, ValueError, KeyError, msgspec.ValidationError) as e:
        _die(f"cannot read inputs: {e}", 2)
        raise
    except ShieldError as e:
        _die(f"malformed bundle: {e}", 2)
        raise
    ok = verify_groth16_timed(vk_json, bundle.proof.to_json(), bundle.public_signals.to_list())
    typer.echo("valid" if ok else "invalid")
    if not ok:
        raise typer.Exit(1)


@app.command()
def demo(
    variant: Optional[str] = typer.Option(None, "--variant", help="base | compliance"),
    store_url: Optional[str] = typer.Option(None, "--store", help="Ledger URL (default: SHIELD_STORE_URL)"),
) -> None:
    """End-to-end: setup, prove, dispatch over loopback, show nullifier status and replay rejection."""
    cfg = _cfg()
    cc = _circuit_config(variant, None)
    console = _console()
    console.print(Panel.fit(f"shield demo · {cc.circuit_id}", style="bold"))

    circuit = build_circuit(cc)
    with console.status("trusted setup …"):
        backend = Groth16Backend.from_setup(circuit)
    registry = VkRegistry()
    registry.register(make_record(backend.circuit_id, backend.vk_json))
    registry.rotate(backend.circuit_id)
    console.print(f"[green]✓[/] setup  constraints={circuit.cs.num_constraints} vk={backend.vk_hash[:24]}…")

    amount = REF_COMPLIANCE_AMOUNT if cc.compliance else REF_AMOUNT
    witness = Witness(secret=REF_SECRET, nullifier=REF_NULLIFIER, recipient=REF_RECIPIENT, amount=amount)
    with console.status("generating proof …"):
        bundle = backend.generate(witness, REF_THRESHOLD if cc.compliance else None)
    signals = bundle.public_signals
    console.print(f"[green]✓[/] proof  nullifierHash={slog.short_hex(signals.nullifier_hash_hex, 16)}")

    transport = LoopbackTransport()
    gate = DispatchGate(
        registry=registry,
        ledger=open_ledger(store_url or cfg.store_url),
        transport=transport,
    )
    payload = b"hello from shield"
    try:
        receipt = gate.send_private_message(
            DEMO_CHAIN_ID, DEMO_DESTINATION, payload, bundle, sender=DEMO_SENDER
        )
    except ShieldError as e:
        _die(f"dispatch failed: {e}")
        raise

    table = Table(title="dispatch", show_header=False)
    table.add_row("message id", receipt.message_id)
    table.add_row("message hash", receipt.message_hash)
    table.add_row("nullifier used", str(gate.is_nullifier_used(signals.nullifier_hash)))
    table.add_row("message recorded", str(gate.is_message_recorded(receipt.message_id)))
    table.add_row("outbox", str(len(transport.outbox)))
    console.print(table)

    try:
        gate.send_private_message(DEMO_CHAIN_ID, DEMO_DESTINATION, payload, bundle, sender=DEMO_SENDER)
    except ReplayedNullifier as e:
        console.print(f"[green]✓[/] replay rejected: {e.msg}")
    else:
        _die("replay was accepted")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":  # pragma: no cover
    main()
