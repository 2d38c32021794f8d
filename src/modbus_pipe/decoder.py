"""WriteDecoder: turn a stream of `[ts, {kind: [{address, value}, ...]}]` records into WriteCommands."""

import logging
from typing import Any, Iterable, Iterator

import msgpack

from .types import RegisterKind, WriteCommand

logger = logging.getLogger(__name__)

ADDRESS_KEY = "address"
VALUE_KEY = "value"

_MAX_ADDRESS = 0xFFFF
_MIN_VALUE = -32768
_MAX_VALUE = 0xFFFF


def _writable_kind(key: Any) -> RegisterKind | None:
    if not isinstance(key, str):
        return None
    try:
        kind = RegisterKind(key)
    except ValueError:
        return None
    return kind if kind.writable else None


def _parse_address(raw: Any) -> int | None:
    if isinstance(raw, bool) or not isinstance(raw, int):
        return None
    if not 0 <= raw <= _MAX_ADDRESS:
        return None
    return raw


def _parse_value(kind: RegisterKind, raw: Any) -> int | None:
    if isinstance(raw, bool):
        return int(raw)
    if not isinstance(raw, int) or not _MIN_VALUE <= raw <= _MAX_VALUE:
        return None
    value = raw & 0xFFFF  # negative values wrap to their uint16 pattern
    if kind is RegisterKind.COIL:
        return 1 if value else 0
    return value


def _map_from_pairs(pairs: list[tuple[Any, Any]]) -> dict[Any, Any]:
    """Build a map from decoded pairs, dropping keys that cannot be hashed (arrays, maps)."""
    result: dict[Any, Any] = {}
    for key, value in pairs:
        try:
            result[key] = value
        except TypeError:
            logger.debug("Dropping map entry with unhashable key: %r", key)
    return result


def parse_entry(kind: RegisterKind, entry: Any) -> WriteCommand | None:
    """Build one command from `{"address": a, "value": v}`; None if either field does not resolve."""
    if not isinstance(entry, dict):
        return None
    address = _parse_address(entry.get(ADDRESS_KEY))
    value = _parse_value(kind, entry.get(VALUE_KEY))
    if address is None or value is None:
        return None
    return WriteCommand(kind=kind, address=address, value=value)


class WriteDecoder:
    """
    Permissive decoder for write batches. Malformed records and entries are skipped
    (logged at debug level); they never abort the rest of the batch.
    """

    def iter_records(self, data: bytes) -> Iterator[Any]:
        """Yield each top-level msgpack object; stop at the first undecodable byte."""
        unpacker = msgpack.Unpacker(
            raw=False,
            strict_map_key=False,
            unicode_errors="surrogateescape",
            object_pairs_hook=_map_from_pairs,
        )
        unpacker.feed(data)
        try:
            for obj in unpacker:
                yield obj
        except (ValueError, TypeError, msgpack.UnpackException) as e:
            logger.warning("Corrupt write batch at offset %d: %s", unpacker.tell(), e)

    def commands_from_record(self, record: Any) -> list[WriteCommand]:
        if not isinstance(record, (list, tuple)) or len(record) < 2 or not isinstance(record[1], dict):
            logger.debug("Skipping record that is not [timestamp, map]: %r", record)
            return []
        commands: list[WriteCommand] = []
        for key, entries in record[1].items():
            kind = _writable_kind(key)
            if kind is None:
                continue
            if not isinstance(entries, (list, tuple)):
                logger.debug("Skipping %s: expected an array of writes, got %r", key, entries)
                continue
            for entry in entries:
                command = parse_entry(kind, entry)
                if command is None:
                    logger.debug("Skipping malformed %s write entry: %r", key, entry)
                    continue
                commands.append(command)
        return commands

    def commands_from_records(self, records: Iterable[Any]) -> list[WriteCommand]:
        commands: list[WriteCommand] = []
        for record in records:
            commands.extend(self.commands_from_record(record))
        return commands

    def decode(self, data: bytes) -> list[WriteCommand]:
        """Decode every record in a msgpack buffer into write commands, in order."""
        return self.commands_from_records(self.iter_records(data))
