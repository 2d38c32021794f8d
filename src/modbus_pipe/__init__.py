"""modbus-pipe: poll Modbus register groups into msgpack records and apply write batches back."""

__version__ = "0.1.0"

from .applier import WriteApplier
from .bridge import ModbusBridge
from .collector import PollCollector
from .config import Backend, Settings, build_client
from .connection import ConnectionManager, Transaction, classify_outcome
from .decoder import WriteDecoder
from .encoder import RecordEncoder
from .errors import ConfigurationError, ModbusIOError, ModbusPipeError
from .types import (
    ConnectionState,
    ErrorClass,
    EventTime,
    FieldError,
    FlushResult,
    Record,
    RegisterGroup,
    RegisterKind,
    ScanPlan,
    Values,
    WriteCommand,
)

__all__ = [
    "__version__",
    "ModbusBridge",
    "ConnectionManager",
    "Transaction",
    "classify_outcome",
    "PollCollector",
    "RecordEncoder",
    "WriteDecoder",
    "WriteApplier",
    "Backend",
    "Settings",
    "build_client",
    "ConfigurationError",
    "ModbusIOError",
    "ModbusPipeError",
    "ConnectionState",
    "ErrorClass",
    "EventTime",
    "FieldError",
    "FlushResult",
    "Record",
    "RegisterGroup",
    "RegisterKind",
    "ScanPlan",
    "Values",
    "WriteCommand",
]
