"""Live instrument adapter over ONT's ``read_until`` client."""

from __future__ import annotations

import importlib
import logging
import time
from typing import Any, Callable

import numpy as np

from poreselect.config import LiveConfig
from poreselect.engine.models import ReadChunk
from poreselect.instrument.base import InstrumentClient

logger = logging.getLogger(__name__)

EventDetector = Callable[[np.ndarray], np.ndarray]


def load_callable(ref: str) -> Callable:
    """Resolve a ``'package.module:function'`` reference.

    Raises:
        ValueError: if the reference is malformed or not callable.
        ImportError: if the module cannot be imported.
    """
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:function', got '{ref}'")
    obj = getattr(importlib.import_module(module_name), attr, None)
    if not callable(obj):
        raise ValueError(f"'{ref}' is not callable")
    return obj


def connect_read_until(config: LiveConfig) -> Any:
    """Create a ``read_until.ReadUntilClient`` for the configured device."""
    try:
        import read_until
    except ImportError as exc:
        raise ImportError(
            "Live runs need the 'read-until' package: pip install 'poreselect[live]'"
        ) from exc

    return read_until.ReadUntilClient(
        mk_host=config.host,
        mk_port=config.port,
        one_chunk=False,
        filter_strands=True,
    )


class LiveInstrument(InstrumentClient):
    """Streams chunks from a running device.

    Raw samples are decoded with the client's ``signal_dtype``. When an
    event detector is given, each chunk's samples are replaced by the event
    levels it returns.
    """

    is_live = True

    def __init__(
        self,
        client: Any,
        config: LiveConfig | None = None,
        event_detector: EventDetector | None = None,
    ):
        self.client = client
        self.config = config or LiveConfig()
        self.event_detector = event_detector
        self._start: float | None = None
        self._read_numbers: dict[tuple[int, str], int] = {}
        self._chunk_counts: dict[tuple[int, str], int] = {}

    @classmethod
    def from_config(cls, config: LiveConfig) -> "LiveInstrument":
        detector = load_callable(config.event_detector) if config.event_detector else None
        return cls(connect_read_until(config), config, detector)

    def run(self) -> bool:
        logger.info(
            "Starting read until on channels %d-%d",
            self.config.first_channel, self.config.last_channel,
        )
        self.client.run(
            first_channel=self.config.first_channel,
            last_channel=self.config.last_channel,
        )
        self._start = time.monotonic()
        return bool(self.client.is_running)

    @property
    def is_running(self) -> bool:
        return bool(self.client.is_running)

    def get_runtime(self) -> float:
        if self._start is None:
            return 0.0
        return time.monotonic() - self._start

    def get_read_chunks(self, batch_size: int) -> list[tuple[int, ReadChunk]]:
        chunks = []
        for channel, read in self.client.get_read_chunks(batch_size=batch_size, last=True):
            key = (channel, read.id)
            number = self._chunk_counts.get(key, 0)
            if number == 0:
                # only the current read per channel is tracked
                self._chunk_counts = {
                    k: v for k, v in self._chunk_counts.items() if k[0] != channel
                }
                self._read_numbers = {
                    k: v for k, v in self._read_numbers.items() if k[0] != channel
                }
            self._chunk_counts[key] = number + 1
            self._read_numbers[key] = read.number

            signal = np.frombuffer(read.raw_data, self.client.signal_dtype).astype(np.float32)
            if self.event_detector is not None:
                signal = np.asarray(self.event_detector(signal), dtype=np.float32)

            chunks.append((channel, ReadChunk(
                read_id=read.id,
                channel=channel,
                read_number=read.number,
                chunk_number=number,
                start_sample=read.chunk_start_sample,
                signal=signal,
            )))
        return chunks

    def _read_number(self, channel: int, read_id: str) -> int | None:
        number = self._read_numbers.get((channel, read_id))
        if number is None:
            logger.debug("No read number known for %s on channel %d", read_id, channel)
        return number

    def stop_receiving_read(self, channel: int, read_id: str) -> None:
        number = self._read_number(channel, read_id)
        if number is not None:
            self.client.stop_receiving_read(channel, number)

    def unblock_read(self, channel: int, read_id: str) -> float:
        number = self._read_number(channel, read_id)
        if number is None:
            return 0.0
        self.client.unblock_read(channel, number, duration=self.config.unblock_duration)
        return self.config.unblock_duration

    def reset(self) -> None:
        logger.info("Resetting read until client")
        self.client.reset()
