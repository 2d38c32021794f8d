#!/usr/bin/env python3
"""Example: poll holding registers and coils every second and print each record; Ctrl+C to stop."""

import sys

from modbus_pipe import ModbusBridge, Settings
from modbus_pipe.errors import ConfigurationError


def main() -> None:
    properties = {
        "address": "192.168.1.10",  # change to your device IP
        "tcp_port": "502",
        "time_interval": "1",
        "coil_addr": "0",
        "coil_no": "8",
        "holding_reg_addr": "0",
        "holding_reg_no": "4",
    }

    try:
        settings = Settings.from_properties(properties)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        with ModbusBridge(settings) as bridge:
            print(f"Polling {settings.scan_plan} every {settings.time_interval}s (Ctrl+C to stop)...")
            for record in bridge.poll_iter():
                print(bridge.encoder.to_json(record))
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()
