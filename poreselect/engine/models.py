"""Data types shared by the mapping pool, decision logic and scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class Classification(str, Enum):
    """Mapping outcome for a read."""

    MAPPED = "mapped"
    UNMAPPED = "unmapped"
    ENDED = "ended"


class Decision(str, Enum):
    """Per-channel action taken on a mapping result."""

    ENDED = "ended"
    KEEP = "keep"
    EJECT = "eject"
    IN_SCAN = "in_scan"


class RunMode(str, Enum):
    """Which reads get ejected."""

    DEPLETE = "deplete"
    ENRICH = "enrich"

    @property
    def reject_class(self) -> Classification:
        if self == RunMode.DEPLETE:
            return Classification.MAPPED
        return Classification.UNMAPPED


class ChannelFilter(str, Enum):
    """Subset of channels the controller acts on."""

    ALL = "all"
    EVEN = "even"
    ODD = "odd"

    def includes(self, channel: int) -> bool:
        if self == ChannelFilter.EVEN:
            return channel % 2 == 0
        if self == ChannelFilter.ODD:
            return channel % 2 == 1
        return True


@dataclass
class ReadChunk:
    """A bounded segment of signal for one read, as delivered by the instrument."""

    read_id: str
    channel: int
    read_number: int
    chunk_number: int
    start_sample: int
    signal: np.ndarray

    def __len__(self) -> int:
        return len(self.signal)


@dataclass(frozen=True)
class Alignment:
    """Where a mapped read landed on the reference."""

    target: str
    strand: str
    target_length: int
    target_start: int
    target_end: int
    query_start: int
    query_end: int
    matches: int
    block_length: int
    mapq: int = 255


@dataclass(frozen=True)
class MapHit:
    """Resolution reported by a per-read mapper."""

    classification: Classification
    alignment: Alignment | None = None


@dataclass
class MappingResult:
    """One resolved read, annotated with the decision taken on it."""

    read_id: str
    channel: int
    chunk_count: int
    classification: Classification
    query_length: int = 0
    alignment: Alignment | None = None
    map_time: float = 0.0
    wait_time: float = 0.0

    decision: Decision | None = None
    decision_elapsed: float | None = None
    unblock_delay: float | None = None

    @property
    def is_mapped(self) -> bool:
        return self.classification == Classification.MAPPED

    @property
    def is_ended(self) -> bool:
        return self.classification == Classification.ENDED


@dataclass
class Channel:
    """Mutable per-pore state owned by the scheduler."""

    number: int
    read_id: str | None = None
    chunk_start: float | None = None
    last_unblocked: str | None = None
    state: Decision = Decision.IN_SCAN
    read_starts: dict[str, float] = field(default_factory=dict)

    def track(self, read_id: str, now: float) -> None:
        """Record a chunk from ``read_id``; a new read restarts the scan."""
        if read_id == self.read_id:
            return
        # keep the previous read's start; it may still resolve as ended
        self.read_starts = {
            rid: t for rid, t in self.read_starts.items() if rid == self.read_id
        }
        self.read_starts[read_id] = now
        self.read_id = read_id
        self.chunk_start = now
        self.state = Decision.IN_SCAN

    def resolve(self, read_id: str, decision: Decision, now: float) -> float | None:
        """Apply a decision and return seconds since the read's first chunk."""
        start = self.read_starts.pop(read_id, None)
        if decision == Decision.EJECT:
            self.last_unblocked = read_id
        if read_id == self.read_id:
            self.state = decision
        if start is None:
            return None
        return now - start
