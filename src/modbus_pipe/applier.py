"""WriteApplier: dispatch decoded WriteCommands to write_coil / write_register."""

import logging
from typing import Iterable

from .connection import ConnectionManager
from .types import FlushResult, RegisterKind, WriteCommand

logger = logging.getLogger(__name__)


class WriteApplier:
    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    def apply(self, command: WriteCommand) -> bool:
        """Apply one write; failures are logged with address and value and reported as False."""
        kind = command.kind
        if kind is RegisterKind.COIL:
            txn = self._manager.execute("write_coil", command.address, bool(command.value))
        elif kind is RegisterKind.HOLDING_REGISTER:
            txn = self._manager.execute("write_register", command.address, command.value)
        else:
            raise ValueError(f"Write not supported for {kind.value}")

        if not txn.ok:
            logger.error(
                "Error writing to %s at address = %d, value = %d: %s",
                "coil" if kind is RegisterKind.COIL else "register",
                command.address,
                command.value,
                txn.message,
            )
            return False
        return True

    def apply_batch(self, commands: Iterable[WriteCommand]) -> FlushResult:
        """
        Apply a batch in order. Returns RETRY without writing anything if the
        device cannot be reached; individual write failures do not stop the batch.
        """
        if not self._manager.ensure_connected():
            return FlushResult.RETRY
        applied = failed = 0
        for command in commands:
            if self.apply(command):
                applied += 1
            else:
                failed += 1
        logger.debug("Write batch done: %d applied, %d failed", applied, failed)
        return FlushResult.OK
