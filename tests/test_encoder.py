"""Tests for RecordEncoder: msgpack layout, EventTime timestamps and error maps."""

import json

import msgpack
import pytest

from modbus_pipe.encoder import EVENT_TIME_EXT, RecordEncoder, pack_event_time, unpack_event_time
from modbus_pipe.types import EventTime, FieldError, Record, RegisterKind, Values

TS = EventTime(1_700_000_000, 123_456_000)


def _unpack(data: bytes) -> list:
    return msgpack.unpackb(data, raw=False)


def test_holding_register_record() -> None:
    record = Record(TS, {RegisterKind.HOLDING_REGISTER: Values((10, 20, 30))})
    ts, fields = _unpack(RecordEncoder().encode(record))
    assert isinstance(ts, msgpack.ExtType)
    assert ts.code == EVENT_TIME_EXT
    assert unpack_event_time(ts) == TS
    assert fields == {"holding_registers": [10, 20, 30]}


def test_error_field_is_one_entry_map() -> None:
    record = Record(
        TS,
        {
            RegisterKind.COIL: Values((1, 0)),
            RegisterKind.INPUT_REGISTER: FieldError("Illegal data address"),
        },
    )
    _, fields = _unpack(RecordEncoder().encode(record))
    assert fields == {"coils": [1, 0], "input_registers": {"error": "Illegal data address"}}


def test_key_order_follows_record() -> None:
    record = Record(
        TS,
        {
            RegisterKind.COIL: Values((1,)),
            RegisterKind.DISCRETE_INPUT: Values((0,)),
            RegisterKind.HOLDING_REGISTER: Values((5,)),
            RegisterKind.INPUT_REGISTER: Values((6,)),
        },
    )
    _, fields = _unpack(RecordEncoder().encode(record))
    assert list(fields) == ["coils", "discrete_inputs", "holding_registers", "input_registers"]


def test_empty_record_still_has_timestamp() -> None:
    decoded = _unpack(RecordEncoder().encode(Record(TS, {})))
    assert len(decoded) == 2
    assert unpack_event_time(decoded[0]) == TS
    assert decoded[1] == {}


def test_event_time_layout_is_big_endian_seconds_then_nanos() -> None:
    ext = pack_event_time(EventTime(1, 2))
    assert ext.data == b"\x00\x00\x00\x01\x00\x00\x00\x02"


def test_unpack_event_time_rejects_other_ext() -> None:
    with pytest.raises(ValueError):
        unpack_event_time(msgpack.ExtType(5, b"\x00" * 8))


def test_to_json() -> None:
    record = Record(EventTime(10, 500_000_000), {RegisterKind.COIL: Values((1, 1))})
    assert json.loads(RecordEncoder().to_json(record)) == [10.5, {"coils": [1, 1]}]
