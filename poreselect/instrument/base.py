"""Capability interface for sequencing instruments."""

from __future__ import annotations

import abc

from poreselect.engine.models import ReadChunk


class InstrumentClient(abc.ABC):
    """What the scheduler needs from a live device or a simulator.

    Subclasses must implement every abstract method. Implementations are
    chosen when the run is assembled; the scheduler never checks which one
    it holds. ``is_live`` tells it whether the connection needs a reset on
    shutdown.
    """

    is_live: bool = False

    @abc.abstractmethod
    def run(self) -> bool:
        """Start streaming. Returns False if the instrument could not start."""
        ...

    @property
    @abc.abstractmethod
    def is_running(self) -> bool:
        ...

    @abc.abstractmethod
    def get_read_chunks(self, batch_size: int) -> list[tuple[int, ReadChunk]]:
        """Return up to ``batch_size`` pending ``(channel, chunk)`` pairs without waiting."""
        ...

    @abc.abstractmethod
    def stop_receiving_read(self, channel: int, read_id: str) -> None:
        """Stop sending chunks for a read but let it finish sequencing."""
        ...

    @abc.abstractmethod
    def unblock_read(self, channel: int, read_id: str) -> float:
        """Eject a read from its pore. Returns the unblock delay in seconds."""
        ...

    def should_eject(self) -> bool:
        """Whether an eject issued now would be carried out."""
        return True

    @abc.abstractmethod
    def get_runtime(self) -> float:
        """Seconds since ``run()`` started streaming."""
        ...

    @abc.abstractmethod
    def reset(self) -> None:
        """Tear down the instrument connection."""
        ...
