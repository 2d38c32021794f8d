#!/usr/bin/env python3
"""Command-line front end for modbus-pipe using Typer."""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .bridge import ModbusBridge
from .config import Settings
from .errors import ConfigurationError, ModbusIOError
from .types import FlushResult, RegisterKind

app = typer.Typer(
    name="modbus-pipe",
    help="Poll Modbus register groups into timestamped records and apply write batches.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

EXIT_USAGE = 2
EXIT_MODBUS = 3
EXIT_UNEXPECTED = 4

# ============================================================================
# Shared options and helpers
# ============================================================================

BackendOption = Annotated[
    Optional[str],
    typer.Option("--backend", "-b", help="Transport backend: tcp, tcppi or rtu", envvar="MODBUS_PIPE_BACKEND"),
]
AddressOption = Annotated[
    Optional[str],
    typer.Option("--address", "-a", help="Device host (tcp/tcppi) or serial port (rtu)", envvar="MODBUS_PIPE_ADDRESS"),
]
PortOption = Annotated[
    Optional[str],
    typer.Option("--tcp-port", "-P", help="Modbus TCP port (tcppi: port or service name)", envvar="MODBUS_PIPE_TCP_PORT"),
]
RateOption = Annotated[
    Optional[int],
    typer.Option("--rate", help="Serial baud rate (required for rtu)", envvar="MODBUS_PIPE_RATE"),
]
UnitIdOption = Annotated[
    Optional[int],
    typer.Option("--unit-id", "-u", help="Modbus unit ID", envvar="MODBUS_PIPE_UNIT_ID"),
]
TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", "-t", help="Per-call timeout in seconds", envvar="MODBUS_PIPE_TIMEOUT"),
]
PropertyOption = Annotated[
    Optional[list[str]],
    typer.Option("--property", "-p", help="Raw configuration property key=value (repeatable)"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def _group_option(flag: str, kind: RegisterKind) -> Any:
    return typer.Option(flag, help=f"Poll {kind.value.replace('_', ' ')} as ADDR:COUNT")


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_property(text: str) -> tuple[str, str]:
    """Split 'key=value'; raises ValueError when there is no '=' or the key is empty."""
    key, sep, value = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"Invalid property {text!r}: expected key=value")
    return key, value.strip()


def parse_group(text: str) -> tuple[int, int]:
    """Parse 'ADDR:COUNT' (decimal or 0x hex) into (address, count)."""
    addr_s, sep, count_s = text.partition(":")
    if not sep:
        raise ValueError(f"Invalid group {text!r}: expected ADDR:COUNT")
    values = []
    for part in (addr_s.strip(), count_s.strip()):
        num = int(part, 16) if part.lower().startswith("0x") else int(part)
        if num < 0:
            raise ValueError(f"Invalid group {text!r}: negative value")
        values.append(num)
    return values[0], values[1]


def build_properties(
    properties: Optional[list[str]] = None,
    *,
    backend: Optional[str] = None,
    address: Optional[str] = None,
    tcp_port: Optional[str] = None,
    rate: Optional[int] = None,
    time_interval: Optional[float] = None,
    unit_id: Optional[int] = None,
    timeout: Optional[float] = None,
    groups: Optional[dict[RegisterKind, Optional[str]]] = None,
) -> dict[str, str]:
    """Merge raw -p properties with typed options; typed options win."""
    props: dict[str, str] = {}
    for item in properties or []:
        key, value = parse_property(item)
        props[key.lower()] = value

    typed = {
        "backend": backend,
        "address": address,
        "tcp_port": tcp_port,
        "rate": rate,
        "time_interval": time_interval,
        "unit_id": unit_id,
        "timeout": timeout,
    }
    for key, value in typed.items():
        if value is not None:
            props[key] = str(value)

    for kind, group_text in (groups or {}).items():
        if group_text is None:
            continue
        addr, count = parse_group(group_text)
        props[f"{kind.config_prefix}_addr"] = str(addr)
        props[f"{kind.config_prefix}_no"] = str(count)
    return props


def create_bridge(props: dict[str, str]) -> ModbusBridge:
    """Create a ModbusBridge; configuration problems exit with code 2."""
    try:
        settings = Settings.from_properties(props)
        return ModbusBridge(settings)
    except ConfigurationError as e:
        typer.echo(f"Error: Configuration: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)


def load_json_records(text: str) -> list[Any]:
    """
    Parse write records given as JSON: a single record, an array of records,
    or one record per line.
    """
    stripped = text.strip()
    if not stripped:
        return []
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return [json.loads(line) for line in stripped.splitlines() if line.strip()]
    if isinstance(data, list) and len(data) >= 2 and isinstance(data[1], dict):
        return [data]
    if isinstance(data, list):
        return data
    return [data]


def _fail_unexpected(e: Exception, verbose: bool) -> None:
    typer.echo(f"Error: Unexpected error: {e}", err=True)
    if verbose:
        import traceback
        traceback.print_exc()
    raise typer.Exit(EXIT_UNEXPECTED)


# ============================================================================
# Commands
# ============================================================================

@app.command()
def poll(
    backend: BackendOption = None,
    address: AddressOption = None,
    tcp_port: PortOption = None,
    rate: RateOption = None,
    unit_id: UnitIdOption = None,
    timeout: TimeoutOption = None,
    properties: PropertyOption = None,
    coils: Annotated[Optional[str], _group_option("--coils", RegisterKind.COIL)] = None,
    discrete_inputs: Annotated[Optional[str], _group_option("--discrete-inputs", RegisterKind.DISCRETE_INPUT)] = None,
    holding_registers: Annotated[
        Optional[str], _group_option("--holding-registers", RegisterKind.HOLDING_REGISTER)
    ] = None,
    input_registers: Annotated[Optional[str], _group_option("--input-registers", RegisterKind.INPUT_REGISTER)] = None,
    interval: Annotated[
        Optional[float], typer.Option("--interval", "-i", help="Polling interval in seconds (time_interval)")
    ] = None,
    once: Annotated[bool, typer.Option("--once", help="Poll once and exit")] = False,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: json or msgpack")] = "json",
    verbose: VerboseOption = False,
) -> None:
    """
    Poll the configured register groups every interval and emit one record per tick.

    Records have the shape [timestamp, {"coils": [...], "holding_registers": [...], ...}];
    a group that failed to read carries {"error": "..."} instead of values.

    - json: one JSON array per line, timestamp as float seconds (default)
    - msgpack: raw msgpack stream on stdout, timestamp as EventTime

    Press Ctrl+C to stop gracefully.
    """
    setup_logging(verbose)

    if format not in ("json", "msgpack"):
        typer.echo(f"Error: Invalid format '{format}'. Must be json or msgpack.", err=True)
        raise typer.Exit(EXIT_USAGE)

    try:
        props = build_properties(
            properties,
            backend=backend,
            address=address,
            tcp_port=tcp_port,
            rate=rate,
            time_interval=interval,
            unit_id=unit_id,
            timeout=timeout,
            groups={
                RegisterKind.COIL: coils,
                RegisterKind.DISCRETE_INPUT: discrete_inputs,
                RegisterKind.HOLDING_REGISTER: holding_registers,
                RegisterKind.INPUT_REGISTER: input_registers,
            },
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)

    bridge = create_bridge(props)
    out = typer.get_binary_stream("stdout") if format == "msgpack" else None

    try:
        with bridge:
            for record in bridge.poll_iter():
                if out is not None:
                    out.write(bridge.encoder.encode(record))
                    out.flush()
                else:
                    typer.echo(bridge.encoder.to_json(record))
                if once:
                    break
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except Exception as e:
        _fail_unexpected(e, verbose)


@app.command()
def apply(
    source: Annotated[str, typer.Argument(help="Write batch file, or '-' for stdin")] = "-",
    backend: BackendOption = None,
    address: AddressOption = None,
    tcp_port: PortOption = None,
    rate: RateOption = None,
    unit_id: UnitIdOption = None,
    timeout: TimeoutOption = None,
    properties: PropertyOption = None,
    format: Annotated[str, typer.Option("--format", "-f", help="Input format: msgpack or json")] = "msgpack",
    verbose: VerboseOption = False,
) -> None:
    """
    Apply a write batch to the device.

    Each record is [timestamp, {"coils": [{"address": 5, "value": true}], "holding_registers": [...]}].
    Only coils and holding_registers are written; malformed entries are skipped.
    Exits with code 3 when the device is unreachable and the batch should be retried.
    """
    setup_logging(verbose)

    if format not in ("json", "msgpack"):
        typer.echo(f"Error: Invalid format '{format}'. Must be msgpack or json.", err=True)
        raise typer.Exit(EXIT_USAGE)

    try:
        props = build_properties(
            properties,
            backend=backend,
            address=address,
            tcp_port=tcp_port,
            rate=rate,
            unit_id=unit_id,
            timeout=timeout,
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)

    if source == "-":
        data = typer.get_binary_stream("stdin").read()
    else:
        path = Path(source)
        if not path.is_file():
            typer.echo(f"Error: Write batch file not found: {path}", err=True)
            raise typer.Exit(EXIT_USAGE)
        data = path.read_bytes()

    bridge = create_bridge(props)

    # flush connects on demand; no open() beforehand
    try:
        if format == "json":
            try:
                records = load_json_records(data.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                typer.echo(f"Error: Invalid JSON write batch: {e}", err=True)
                raise typer.Exit(EXIT_USAGE)
            result = bridge.flush_records(records)
        else:
            result = bridge.flush(data)
    except typer.Exit:
        raise
    except Exception as e:
        _fail_unexpected(e, verbose)
    finally:
        bridge.close()

    if result is FlushResult.RETRY:
        typer.echo("Error: Device unreachable; batch not applied (retry later)", err=True)
        raise typer.Exit(EXIT_MODBUS)
    typer.echo("OK: Write batch applied")


@app.command()
def ping(
    backend: BackendOption = None,
    address: AddressOption = None,
    tcp_port: PortOption = None,
    rate: RateOption = None,
    unit_id: UnitIdOption = None,
    timeout: TimeoutOption = None,
    properties: PropertyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Test connectivity by connecting and reading 1 holding register at offset 0.
    """
    setup_logging(verbose)

    try:
        props = build_properties(
            properties,
            backend=backend,
            address=address,
            tcp_port=tcp_port,
            rate=rate,
            unit_id=unit_id,
            timeout=timeout,
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)

    bridge = create_bridge(props)
    target = bridge.settings.address

    try:
        with bridge.manager as manager:
            txn = manager.execute("read_holding_registers", 0, count=1)
            if not txn.ok:
                raise ModbusIOError(txn.message, kind=RegisterKind.HOLDING_REGISTER.value, address=0)
            typer.echo(f"OK: Connected to {target}")
    except ModbusIOError as e:
        typer.echo(f"Error: Connection/Modbus error: {e}", err=True)
        raise typer.Exit(EXIT_MODBUS)
    except Exception as e:
        _fail_unexpected(e, verbose)


@app.command()
def info(
    backend: BackendOption = None,
    address: AddressOption = None,
    tcp_port: PortOption = None,
    rate: RateOption = None,
    unit_id: UnitIdOption = None,
    timeout: TimeoutOption = None,
    properties: PropertyOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show package version and, when an address is configured, the resolved settings.

    Does not connect to the device.
    """
    setup_logging(verbose)

    info_data: dict[str, Any] = {"version": __version__}

    try:
        props = build_properties(
            properties,
            backend=backend,
            address=address,
            tcp_port=tcp_port,
            rate=rate,
            unit_id=unit_id,
            timeout=timeout,
        )
        if props.get("address"):
            info_data["settings"] = Settings.from_properties(props).describe()
    except (ValueError, ConfigurationError) as e:
        typer.echo(f"Error: Configuration: {e}", err=True)
        raise typer.Exit(EXIT_USAGE)

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
        return

    typer.echo(f"modbus-pipe version: {info_data['version']}")
    settings = info_data.get("settings")
    if settings:
        typer.echo(f"Backend:         {settings['backend']}")
        typer.echo(f"Address:         {settings['address']}")
        if settings["tcp_port"] is not None:
            typer.echo(f"TCP port:        {settings['tcp_port']}")
        if settings["rate"] is not None:
            typer.echo(f"Rate:            {settings['rate']}")
        typer.echo(f"Interval:        {settings['time_interval']}s")
        for key, group in settings["groups"].items():
            typer.echo(f"{key + ':':<17}{group['address']} x {group['count']}")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"modbus-pipe {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """modbus-pipe - Modbus polling and write-back over msgpack records."""
    pass


if __name__ == "__main__":
    app()
