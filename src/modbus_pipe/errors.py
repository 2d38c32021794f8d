"""Exceptions for modbus-pipe: configuration faults and explicit Modbus I/O errors."""


class ModbusPipeError(Exception):
    """Base exception for modbus-pipe."""

    pass


class ConfigurationError(ModbusPipeError):
    """Raised when settings are missing or invalid; fatal at startup."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        self.key = key
        super().__init__(message)


class ModbusIOError(ModbusPipeError):
    """Raised by explicit single operations (connect, ping) when Modbus I/O fails."""

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        address: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.kind = kind
        self.address = address
        self.cause = cause
        super().__init__(message)
