#!/usr/bin/env python3
"""Example: build a msgpack write batch and apply it to a coil and a holding register."""

import sys

import msgpack

from modbus_pipe import FlushResult, ModbusBridge, Settings
from modbus_pipe.encoder import pack_event_time
from modbus_pipe.types import EventTime


def main() -> None:
    settings = Settings.from_properties({"address": "192.168.1.10"})  # change to your device IP

    batch = msgpack.packb(
        [
            pack_event_time(EventTime.now()),
            {
                "coils": [{"address": 1, "value": True}],
                "holding_registers": [{"address": 7, "value": 1234}],
            },
        ],
        use_bin_type=True,
    )

    bridge = ModbusBridge(settings)
    try:
        result = bridge.flush(batch)  # connects on demand
    finally:
        bridge.close()

    if result is FlushResult.RETRY:
        print("Device unreachable; batch should be retried", file=sys.stderr)
        sys.exit(1)
    print("Batch applied")


if __name__ == "__main__":
    main()
