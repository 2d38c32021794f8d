"""ModbusBridge: one shared connection driving the poll pipeline and the write pipeline."""

import logging
import time
from typing import Any, Iterator

from .applier import WriteApplier
from .collector import PollCollector
from .config import Settings, build_client
from .connection import ConnectionManager
from .decoder import WriteDecoder
from .encoder import RecordEncoder
from .types import FlushResult, Record, ScanPlan

logger = logging.getLogger(__name__)


class ModbusBridge:
    """
    Polls the configured scan plan into encoded records and applies write batches,
    both through a single ConnectionManager. A pre-built client may be injected
    (tests, custom transports); otherwise it is built from settings.
    """

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._plan: ScanPlan = settings.scan_plan
        self._manager = ConnectionManager(
            client if client is not None else build_client(settings),
            unit_id=settings.unit_id,
            name=f"{settings.backend.value}:{settings.address}",
        )
        self._collector = PollCollector(self._manager)
        self._encoder = RecordEncoder()
        self._decoder = WriteDecoder()
        self._applier = WriteApplier(self._manager)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def encoder(self) -> RecordEncoder:
        return self._encoder

    def open(self) -> bool:
        """Initial connect. A failure is logged, not raised; the next tick or flush retries."""
        connected = self._manager.ensure_connected()
        if not connected:
            logger.warning("Initial connection failed; will retry on next cycle")
        return connected

    def collect(self) -> Record:
        return self._collector.collect(self._plan)

    def tick(self) -> bytes:
        """Run one poll and return the msgpack-encoded record."""
        return self._encoder.encode(self.collect())

    def flush(self, data: bytes) -> FlushResult:
        """Decode a msgpack write batch and apply it."""
        return self._applier.apply_batch(self._decoder.decode(data))

    def flush_records(self, records: list[Any]) -> FlushResult:
        """Apply already-decoded records (e.g. parsed from JSON)."""
        return self._applier.apply_batch(self._decoder.commands_from_records(records))

    def poll_iter(self, interval_s: float | None = None) -> Iterator[Record]:
        """
        Yield one Record every interval_s seconds (default: settings.time_interval)
        indefinitely. The sleep accounts for the time the tick itself took.
        """
        interval = interval_s if interval_s is not None else self._settings.time_interval
        while True:
            started = time.monotonic()
            yield self.collect()
            elapsed = time.monotonic() - started
            time.sleep(max(0.0, interval - elapsed))

    def close(self) -> None:
        self._manager.close()

    def __enter__(self) -> "ModbusBridge":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
