"""RecordEncoder: serialize a Record as msgpack `[EventTime, {key: values | {"error": msg}}]`."""

import json
import struct
from typing import Any

import msgpack

from .types import EventTime, FieldError, Record

# Fluent Bit EventTime: ext type 0, big-endian uint32 seconds + uint32 nanoseconds
EVENT_TIME_EXT = 0
_EVENT_TIME = struct.Struct(">II")


def pack_event_time(ts: EventTime) -> msgpack.ExtType:
    return msgpack.ExtType(EVENT_TIME_EXT, _EVENT_TIME.pack(ts.seconds, ts.nanoseconds))


def unpack_event_time(ext: msgpack.ExtType) -> EventTime:
    if ext.code != EVENT_TIME_EXT or len(ext.data) != _EVENT_TIME.size:
        raise ValueError(f"Not an EventTime extension: code={ext.code}, size={len(ext.data)}")
    seconds, nanoseconds = _EVENT_TIME.unpack(ext.data)
    return EventTime(seconds, nanoseconds)


def field_map(record: Record) -> dict[str, Any]:
    """Field map with wire keys; error fields become {"error": message}."""
    out: dict[str, Any] = {}
    for kind, value in record.fields.items():
        if isinstance(value, FieldError):
            out[kind.value] = {"error": value.message}
        else:
            out[kind.value] = list(value.values)
    return out


class RecordEncoder:
    """Pure Record -> bytes transform; no I/O."""

    def encode(self, record: Record) -> bytes:
        return msgpack.packb([pack_event_time(record.timestamp), field_map(record)], use_bin_type=True)

    def to_json(self, record: Record) -> str:
        """Same structure as encode() with a float timestamp, for terminal output."""
        return json.dumps([record.timestamp.to_float(), field_map(record)])
