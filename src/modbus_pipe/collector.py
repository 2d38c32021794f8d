"""PollCollector: read every enabled register group once per tick into a Record."""

import logging

from .connection import ConnectionManager
from .types import ErrorClass, EventTime, FieldError, Record, RegisterGroup, ScanPlan, Values

logger = logging.getLogger(__name__)


def _extract(group: RegisterGroup, response: object) -> list[int] | None:
    """Return exactly point_count readings, or None for a short response."""
    count = group.point_count
    if group.kind.is_bit:
        # bit responses are padded to a byte boundary
        bits = getattr(response, "bits", None)
        if bits is None or len(bits) < count:
            return None
        return [1 if b else 0 for b in bits[:count]]
    registers = getattr(response, "registers", None)
    if registers is None or len(registers) < count:
        return None
    return [int(r) & 0xFFFF for r in registers[:count]]


class PollCollector:
    """Collects one Record per tick through a shared ConnectionManager."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    def collect(self, plan: ScanPlan) -> Record:
        """
        Read each enabled group in kind order.

        - Connection lost (or reconnect failed): stop and return the partial record.
        - Protocol error or short response: store FieldError and continue.
        """
        record = Record(timestamp=EventTime.now())

        for group in plan.enabled_groups():
            if not self._manager.ensure_connected():
                logger.warning("Not connected; skipping %s and remaining groups", group.kind.value)
                break

            txn = self._manager.execute(group.kind.read_function, group.base_address, count=group.point_count)

            if txn.error is ErrorClass.CONNECTION:
                logger.warning(
                    "Connection fault reading %s at %d: %s; aborting tick",
                    group.kind.value,
                    group.base_address,
                    txn.message,
                )
                break
            if txn.error is ErrorClass.PROTOCOL:
                logger.warning("Error reading %s at %d: %s", group.kind.value, group.base_address, txn.message)
                record.fields[group.kind] = FieldError(txn.message)
                continue

            readings = _extract(group, txn.response)
            if readings is None:
                message = f"Short response: expected {group.point_count} points"
                logger.warning("Error reading %s at %d: %s", group.kind.value, group.base_address, message)
                record.fields[group.kind] = FieldError(message)
                continue
            record.fields[group.kind] = Values(tuple(readings))

        return record
