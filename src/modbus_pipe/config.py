"""Settings: parse string properties into typed configuration and build the pymodbus transport."""

import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from pymodbus import FramerType
from pymodbus.client import ModbusSerialClient, ModbusTcpClient

from .errors import ConfigurationError
from .types import RegisterGroup, RegisterKind, ScanPlan

logger = logging.getLogger(__name__)

DEFAULT_TCP_PORT = 502

# Serial line framing for the rtu backend: no parity, 8 data bits, 1 stop bit
RTU_PARITY = "N"
RTU_BYTESIZE = 8
RTU_STOPBITS = 1


class Backend(str, Enum):
    TCP = "tcp"
    TCP_PI = "tcppi"
    RTU = "rtu"


def _get(props: Mapping[str, str], key: str) -> str | None:
    value = props.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int_property(props: Mapping[str, str], key: str, default: int, *aliases: str) -> int:
    raw = _get(props, key)
    for alias in aliases:
        if raw is not None:
            break
        raw = _get(props, alias)
    if raw is None:
        return default
    try:
        value = int(raw, 16) if raw.lower().startswith("0x") else int(raw)
    except ValueError:
        raise ConfigurationError(f"Property {key!r} must be an integer, got {raw!r}", key=key) from None
    if value < 0:
        raise ConfigurationError(f"Property {key!r} must be >= 0, got {value}", key=key)
    return value


def _float_property(props: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(props, key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"Property {key!r} must be a number, got {raw!r}", key=key) from None
    if value <= 0:
        raise ConfigurationError(f"Property {key!r} must be > 0, got {value}", key=key)
    return value


def resolve_port(port: str | int, *, backend: Backend = Backend.TCP) -> int:
    """Return a numeric TCP port; tcppi also accepts a service name (e.g. 'mbap')."""
    if isinstance(port, int):
        return port
    text = port.strip()
    try:
        return int(text)
    except ValueError:
        pass
    if backend is not Backend.TCP_PI:
        raise ConfigurationError(f"tcp_port must be an integer, got {port!r}", key="tcp_port")
    try:
        return socket.getservbyname(text, "tcp")
    except OSError:
        raise ConfigurationError(f"Unknown tcp service {port!r}", key="tcp_port") from None


@dataclass(frozen=True)
class Settings:
    """Connection parameters and scan plan; lives for the process lifetime."""

    address: str
    backend: Backend = Backend.TCP
    tcp_port: int = DEFAULT_TCP_PORT
    rate: int | None = None
    time_interval: float = 1.0
    unit_id: int = 1
    timeout: float = 3.0
    retries: int = 3
    groups: tuple[RegisterGroup, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.address:
            raise ConfigurationError(f"Device ({self.backend.value}) address is required", key="address")
        if self.backend is Backend.RTU and not self.rate:
            raise ConfigurationError("Connection rate is required for the rtu backend", key="rate")
        if self.time_interval <= 0:
            raise ConfigurationError(f"time_interval must be > 0, got {self.time_interval}", key="time_interval")
        try:
            ScanPlan(self.groups)
        except ValueError as e:
            raise ConfigurationError(str(e)) from None

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "Settings":
        """
        Build Settings from flat string properties (backend, address, tcp_port,
        rate, time_interval, unit_id, timeout, retries, {kind}_addr, {kind}_no).

        Keys are case-insensitive; `{kind}_nop` is accepted as an alias for `{kind}_no`.
        Raises ConfigurationError for missing or malformed values.
        """
        props = {str(k).strip().lower(): v for k, v in properties.items()}

        backend_raw = (_get(props, "backend") or Backend.TCP.value).lower()
        try:
            backend = Backend(backend_raw)
        except ValueError:
            raise ConfigurationError(
                f"Backend {backend_raw!r} unknown: has to be [tcp|tcppi|rtu]", key="backend"
            ) from None

        address = _get(props, "address")
        if address is None:
            raise ConfigurationError(f"Device ({backend.value}) address is required", key="address")

        port_raw = _get(props, "tcp_port")
        tcp_port = resolve_port(port_raw, backend=backend) if port_raw is not None else DEFAULT_TCP_PORT

        rate: int | None = None
        if backend is Backend.RTU:
            if _get(props, "rate") is None:
                raise ConfigurationError("Connection rate is required for the rtu backend", key="rate")
            rate = _int_property(props, "rate", 0)

        groups = tuple(
            RegisterGroup(
                kind=kind,
                base_address=_int_property(props, f"{kind.config_prefix}_addr", 0),
                point_count=_int_property(props, f"{kind.config_prefix}_no", 0, f"{kind.config_prefix}_nop"),
            )
            for kind in RegisterKind
        )

        return cls(
            address=address,
            backend=backend,
            tcp_port=tcp_port,
            rate=rate,
            time_interval=_float_property(props, "time_interval", 1.0),
            unit_id=_int_property(props, "unit_id", 1),
            timeout=_float_property(props, "timeout", 3.0),
            retries=_int_property(props, "retries", 3),
            groups=groups,
        )

    @property
    def scan_plan(self) -> ScanPlan:
        return ScanPlan(self.groups)

    def describe(self) -> dict[str, Any]:
        """Plain dict view for `modbus-pipe info`."""
        return {
            "backend": self.backend.value,
            "address": self.address,
            "tcp_port": self.tcp_port if self.backend is not Backend.RTU else None,
            "rate": self.rate,
            "time_interval": self.time_interval,
            "unit_id": self.unit_id,
            "timeout": self.timeout,
            "retries": self.retries,
            "groups": {
                g.kind.value: {"address": g.base_address, "count": g.point_count}
                for g in self.scan_plan.enabled_groups()
            },
        }


def build_client(settings: Settings) -> ModbusTcpClient | ModbusSerialClient:
    """Create (but do not connect) the pymodbus client for the configured backend."""
    try:
        if settings.backend is Backend.RTU:
            client = ModbusSerialClient(
                port=settings.address,
                framer=FramerType.RTU,
                baudrate=settings.rate,
                parity=RTU_PARITY,
                bytesize=RTU_BYTESIZE,
                stopbits=RTU_STOPBITS,
                timeout=settings.timeout,
                retries=settings.retries,
            )
        else:
            # tcp and tcppi share a client; pymodbus resolves IPv4/IPv6 host names itself
            client = ModbusTcpClient(
                host=settings.address,
                port=settings.tcp_port,
                timeout=settings.timeout,
                retries=settings.retries,
            )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Unable to allocate Modbus client: {e}") from e
    logger.debug("Built %s client for %s", settings.backend.value, settings.address)
    return client
