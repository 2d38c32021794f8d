"""ConnectionManager: owns the pymodbus client, classifies outcomes and drives reconnects."""

import errno
import logging
import threading
from dataclasses import dataclass
from typing import Any

from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from .errors import ModbusIOError
from .types import ConnectionState, ErrorClass

logger = logging.getLogger(__name__)

# errno values meaning the handle is unusable and must be reopened
CONNECTION_ERRNOS = frozenset(
    {
        errno.EBADF,
        errno.ECONNRESET,
        errno.EPIPE,
        errno.ECONNREFUSED,
        errno.ETIMEDOUT,
        errno.ENOPROTOOPT,
        errno.EINPROGRESS,
    }
)


def classify_outcome(outcome: Any) -> ErrorClass:
    """Map a pymodbus response or raised exception to an ErrorClass."""
    if isinstance(outcome, (ConnectionException, ModbusIOException, TimeoutError)):
        return ErrorClass.CONNECTION
    if isinstance(outcome, OSError):
        return ErrorClass.CONNECTION if outcome.errno in CONNECTION_ERRNOS else ErrorClass.PROTOCOL
    if isinstance(outcome, BaseException):
        return ErrorClass.PROTOCOL
    if outcome is None:
        # pymodbus returns None only when it gave up waiting for a response
        return ErrorClass.CONNECTION
    if outcome.isError():
        return ErrorClass.PROTOCOL
    return ErrorClass.NONE


@dataclass(frozen=True)
class Transaction:
    """Result of one Modbus call: the response (None on exception), its class and an error message."""

    response: Any
    error: ErrorClass
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is ErrorClass.NONE


class ConnectionManager:
    """
    Single owner of a pymodbus client. Tracks the last error class and reconnects
    (close + connect) at the next ensure_connected() after a connection fault.
    Every transaction runs under one lock so poll and write paths may share it.
    """

    def __init__(self, client: Any, unit_id: int = 1, name: str = "modbus") -> None:
        self._client = client
        self._unit_id = unit_id
        self._name = name
        self._state = ConnectionState.DISCONNECTED
        self._last_error = ErrorClass.NONE
        self._lock = threading.RLock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> ErrorClass:
        return self._last_error

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def ensure_connected(self) -> bool:
        """Return True when connected; otherwise close the stale handle and try one connect."""
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return True
            if self._last_error is ErrorClass.CONNECTION:
                logger.info("[%s] Reconnecting after connection fault", self._name)
            self._state = ConnectionState.CONNECTING
            try:
                self._client.close()
            except Exception as e:
                logger.warning("[%s] Error closing Modbus client: %s", self._name, e)
            try:
                connected = bool(self._client.connect())
                reason = "connect() returned False"
            except (ModbusException, OSError) as e:
                connected = False
                reason = str(e)
            if not connected:
                self._state = ConnectionState.DISCONNECTED
                self._last_error = ErrorClass.CONNECTION
                logger.error("[%s] Connection to Modbus device failed: %s", self._name, reason)
                return False
            self._state = ConnectionState.CONNECTED
            self._last_error = ErrorClass.NONE
            logger.debug("[%s] Connected", self._name)
            return True

    def connect(self) -> None:
        """Connect or raise ModbusIOError; used where failure must be reported immediately."""
        if not self.ensure_connected():
            raise ModbusIOError(f"[{self._name}] Failed to connect to Modbus device")

    def classify(self, outcome: Any) -> ErrorClass:
        """Record the class of a response/exception as last_error; a connection fault drops the state."""
        error = classify_outcome(outcome)
        with self._lock:
            self._last_error = error
            if error is ErrorClass.CONNECTION:
                self._state = ConnectionState.DISCONNECTED
        return error

    def execute(self, function: str, *args: Any, **kwargs: Any) -> Transaction:
        """Call client.<function>(*args, device_id=unit_id) and classify the outcome; never raises for I/O."""
        with self._lock:
            try:
                response = getattr(self._client, function)(*args, device_id=self._unit_id, **kwargs)
            except (ModbusException, OSError, ValueError) as e:
                error = self.classify(e)
                return Transaction(None, error, str(e) or type(e).__name__)
            error = self.classify(response)
            message = "" if error is ErrorClass.NONE else str(response) if response is not None else "No response"
            return Transaction(response, error, message)

    def close(self) -> None:
        """Close the client from any state."""
        with self._lock:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("[%s] Error closing Modbus client: %s", self._name, e)
            self._state = ConnectionState.DISCONNECTED

    def __enter__(self) -> "ConnectionManager":
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
