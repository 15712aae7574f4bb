"""Simulated instrument replaying pre-segmented signal.

Reads come from a tab-separated table, one read per line::

    read_id <TAB> channel <TAB> v1,v2,v3,...

Reads on the same channel are sequenced one after another. A read's signal
is cut into chunks of ``chunk_size`` values; chunk ``i`` becomes available
``(i + 1) * chunk_time`` seconds after the read starts, and the read ends one
``chunk_time`` after its last chunk. An eject ends the read immediately and
the next read starts ``unblock_delay`` seconds later.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import numpy as np

from poreselect.config import SimulatorConfig
from poreselect.engine.models import ReadChunk
from poreselect.instrument.base import InstrumentClient

logger = logging.getLogger(__name__)


@dataclass
class SimulatedRead:
    """A read to be replayed on a channel."""

    read_id: str
    channel: int
    signal: np.ndarray
    number: int = 0


@dataclass
class _ChannelState:
    reads: deque[SimulatedRead] = field(default_factory=deque)
    current: SimulatedRead | None = None
    started_at: float = 0.0
    ends_at: float = 0.0
    next_start: float = 0.0
    delivered: int = 0
    chunk_total: int = 0
    receiving: bool = True


def load_signal_table(path: Path) -> list[SimulatedRead]:
    """Parse a signal table. Malformed lines are logged and skipped."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Signal table not found: {path}")

    reads: list[SimulatedRead] = []
    numbers: dict[int, int] = {}
    with path.open() as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            fields = line.split("\t")
            if len(fields) != 3:
                logger.warning("%s:%d: expected 3 columns, found %d; skipped", path, lineno, len(fields))
                continue
            read_id, channel_str, values = fields
            try:
                channel = int(channel_str)
                signal = np.array(values.split(","), dtype=np.float32)
            except ValueError:
                logger.warning("%s:%d: unparseable channel or signal; skipped", path, lineno)
                continue
            if channel < 1 or signal.size == 0:
                logger.warning("%s:%d: empty signal or invalid channel; skipped", path, lineno)
                continue
            numbers[channel] = numbers.get(channel, 0) + 1
            reads.append(SimulatedRead(read_id, channel, signal, numbers[channel]))

    logger.info("Loaded %d reads on %d channels from %s", len(reads), len(numbers), path)
    return reads


class SimulatedInstrument(InstrumentClient):
    """Replays reads on a (possibly injected) clock."""

    is_live = False

    def __init__(
        self,
        reads: Iterable[SimulatedRead],
        chunk_size: int = 400,
        chunk_time: float = 1.0,
        unblock_delay: float = 0.1,
        max_unblocks_per_chunk: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.chunk_size = chunk_size
        self.chunk_time = chunk_time
        self.unblock_delay = unblock_delay
        self.max_unblocks_per_chunk = max_unblocks_per_chunk
        self._clock = clock
        self._start: float | None = None
        self._running = False
        self._next_channel = 0
        self._window = -1
        self._window_unblocks = 0

        self.unblocked = 0
        self.stopped = 0

        self._channels: dict[int, _ChannelState] = {}
        for read in reads:
            self._channels.setdefault(read.channel, _ChannelState()).reads.append(read)

    @classmethod
    def from_config(
        cls,
        config: SimulatorConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> "SimulatedInstrument":
        return cls(
            load_signal_table(config.signal_table),
            chunk_size=config.chunk_size,
            chunk_time=config.chunk_time,
            unblock_delay=config.unblock_delay,
            max_unblocks_per_chunk=config.max_unblocks_per_chunk,
            clock=clock,
        )

    @property
    def channels(self) -> list[int]:
        return sorted(self._channels)

    def run(self) -> bool:
        if not self._channels:
            logger.error("Simulator has no reads to replay")
            return False
        self._start = self._clock()
        self._running = True
        return True

    def get_runtime(self) -> float:
        if self._start is None:
            return 0.0
        return self._clock() - self._start

    @property
    def is_running(self) -> bool:
        if not self._running:
            return False
        now = self.get_runtime()
        for state in self._channels.values():
            self._advance(state, now)
        return any(s.current is not None or s.reads for s in self._channels.values())

    def _advance(self, state: _ChannelState, now: float) -> None:
        """Bring a channel's current read up to date with ``now``."""
        while True:
            if state.current is not None:
                if now < state.ends_at:
                    return
                state.next_start = state.ends_at
                state.current = None
            if not state.reads or now < state.next_start:
                return
            read = state.reads.popleft()
            state.current = read
            state.started_at = state.next_start
            state.chunk_total = math.ceil(len(read.signal) / self.chunk_size)
            state.ends_at = state.started_at + (state.chunk_total + 1) * self.chunk_time
            state.delivered = 0
            state.receiving = True

    def _roll_window(self, now: float) -> None:
        window = int(now // self.chunk_time)
        if window != self._window:
            self._window = window
            self._window_unblocks = 0

    def get_read_chunks(self, batch_size: int) -> list[tuple[int, ReadChunk]]:
        if not self._running:
            return []
        now = self.get_runtime()
        self._roll_window(now)

        numbers = self.channels
        count = len(numbers)
        chunks: list[tuple[int, ReadChunk]] = []
        for offset in range(count):
            if len(chunks) >= batch_size:
                break
            channel = numbers[(self._next_channel + offset) % count]
            state = self._channels[channel]
            self._advance(state, now)
            read = state.current
            if read is None or not state.receiving or state.delivered >= state.chunk_total:
                continue
            if now < state.started_at + (state.delivered + 1) * self.chunk_time:
                continue

            i = state.delivered
            start = i * self.chunk_size
            chunks.append((channel, ReadChunk(
                read_id=read.read_id,
                channel=channel,
                read_number=read.number,
                chunk_number=i,
                start_sample=start,
                signal=read.signal[start:start + self.chunk_size].copy(),
            )))
            state.delivered += 1

        if count:
            self._next_channel = (self._next_channel + 1) % count
        return chunks

    def _current(self, channel: int, read_id: str) -> _ChannelState | None:
        state = self._channels.get(channel)
        if state is None or state.current is None or state.current.read_id != read_id:
            return None
        return state

    def stop_receiving_read(self, channel: int, read_id: str) -> None:
        state = self._current(channel, read_id)
        if state is not None:
            state.receiving = False
            self.stopped += 1

    def should_eject(self) -> bool:
        if self.max_unblocks_per_chunk is None:
            return True
        self._roll_window(self.get_runtime())
        return self._window_unblocks < self.max_unblocks_per_chunk

    def unblock_read(self, channel: int, read_id: str) -> float:
        now = self.get_runtime()
        self._roll_window(now)
        state = self._current(channel, read_id)
        if state is None:
            logger.debug("Unblock for %s on channel %d after the read ended", read_id, channel)
            return 0.0
        state.current = None
        state.next_start = now + self.unblock_delay
        self._window_unblocks += 1
        self.unblocked += 1
        return self.unblock_delay

    def reset(self) -> None:
        self._running = False
        for state in self._channels.values():
            state.current = None
            state.reads.clear()
