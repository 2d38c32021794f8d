"""Core data model: register kinds, scan plan, records and write commands."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Union


class RegisterKind(str, Enum):
    """Modbus tables in scan order; the value is the record's wire key."""

    COIL = "coils"
    DISCRETE_INPUT = "discrete_inputs"
    HOLDING_REGISTER = "holding_registers"
    INPUT_REGISTER = "input_registers"

    @property
    def is_bit(self) -> bool:
        return self in (RegisterKind.COIL, RegisterKind.DISCRETE_INPUT)

    @property
    def writable(self) -> bool:
        return self in (RegisterKind.COIL, RegisterKind.HOLDING_REGISTER)

    @property
    def config_prefix(self) -> str:
        return _CONFIG_PREFIX[self]

    @property
    def read_function(self) -> str:
        return _READ_FUNCTION[self]

    @property
    def write_function(self) -> str | None:
        return _WRITE_FUNCTION.get(self)


_CONFIG_PREFIX: dict[RegisterKind, str] = {
    RegisterKind.COIL: "coil",
    RegisterKind.DISCRETE_INPUT: "discrete_input",
    RegisterKind.HOLDING_REGISTER: "holding_reg",
    RegisterKind.INPUT_REGISTER: "input_reg",
}

_READ_FUNCTION: dict[RegisterKind, str] = {
    RegisterKind.COIL: "read_coils",
    RegisterKind.DISCRETE_INPUT: "read_discrete_inputs",
    RegisterKind.HOLDING_REGISTER: "read_holding_registers",
    RegisterKind.INPUT_REGISTER: "read_input_registers",
}

_WRITE_FUNCTION: dict[RegisterKind, str] = {
    RegisterKind.COIL: "write_coil",
    RegisterKind.HOLDING_REGISTER: "write_register",
}


class ErrorClass(str, Enum):
    """Classification of the last transaction outcome."""

    NONE = "none"
    CONNECTION = "connection"
    PROTOCOL = "protocol"


class ConnectionState(str, Enum):
    """Lifecycle of the shared connection; every reconnect passes through CONNECTING."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class FlushResult(str, Enum):
    """Outcome of applying one write batch."""

    OK = "ok"
    RETRY = "retry"


@dataclass(frozen=True)
class RegisterGroup:
    """One contiguous block to poll; point_count == 0 disables the group."""

    kind: RegisterKind
    base_address: int = 0
    point_count: int = 0

    def __post_init__(self) -> None:
        if self.base_address < 0:
            raise ValueError(f"base_address must be >= 0, got {self.base_address}")
        if self.point_count < 0:
            raise ValueError(f"point_count must be >= 0, got {self.point_count}")

    @property
    def enabled(self) -> bool:
        return self.point_count > 0


class ScanPlan:
    """
    Up to four register groups keyed by kind. Enabled groups are always
    visited in RegisterKind order regardless of construction order.
    """

    def __init__(self, groups: Iterable[RegisterGroup] = ()) -> None:
        self._groups: dict[RegisterKind, RegisterGroup] = {}
        for group in groups:
            if group.kind in self._groups:
                raise ValueError(f"Duplicate register group: {group.kind.value}")
            self._groups[group.kind] = group

    def get(self, kind: RegisterKind) -> RegisterGroup | None:
        return self._groups.get(kind)

    def enabled_groups(self) -> list[RegisterGroup]:
        return [
            self._groups[kind]
            for kind in RegisterKind
            if kind in self._groups and self._groups[kind].enabled
        ]

    def __iter__(self) -> Iterator[RegisterGroup]:
        return iter(self.enabled_groups())

    def __len__(self) -> int:
        return len(self.enabled_groups())

    def __repr__(self) -> str:
        inner = ", ".join(
            f"{g.kind.value}@{g.base_address}x{g.point_count}" for g in self.enabled_groups()
        )
        return f"ScanPlan({inner})"


@dataclass(frozen=True)
class EventTime:
    """Seconds + nanoseconds instant, matching Fluent Bit's EventTime."""

    seconds: int
    nanoseconds: int = 0

    @classmethod
    def now(cls) -> "EventTime":
        ns = time.time_ns()
        return cls(ns // 1_000_000_000, ns % 1_000_000_000)

    def to_float(self) -> float:
        return self.seconds + self.nanoseconds / 1e9


@dataclass(frozen=True)
class Values:
    """Raw readings for one group: 0/1 for bits, uint16 for registers."""

    values: tuple[int, ...]


@dataclass(frozen=True)
class FieldError:
    message: str


FieldValue = Union[Values, FieldError]


@dataclass
class Record:
    """One tick's readings; fields are inserted in scan order."""

    timestamp: EventTime
    fields: dict[RegisterKind, FieldValue] = field(default_factory=dict)


@dataclass(frozen=True)
class WriteCommand:
    """Single coil or holding register write decoded from a batch."""

    kind: RegisterKind
    address: int
    value: int

    def __post_init__(self) -> None:
        if not self.kind.writable:
            raise ValueError(f"{self.kind.value} is not writable")
        if self.address < 0:
            raise ValueError(f"address must be >= 0, got {self.address}")
        if not 0 <= self.value <= 0xFFFF:
            raise ValueError(f"value out of uint16 range: {self.value}")
