"""Abstract interfaces for the mapping subsystem."""

from __future__ import annotations

import abc
import logging
from pathlib import Path

from poreselect.config import MapperConfig
from poreselect.engine.models import MapHit, MappingResult, ReadChunk
from poreselect.mapping.index import missing_index_artifacts
from poreselect.model.pore_model import PoreModel

logger = logging.getLogger(__name__)


class MappingSubsystem(abc.ABC):
    """What the scheduler needs from the mapping side.

    ``submit`` and ``poll`` must return without waiting on mapping work.
    Results for one (channel, read) come out in the order their chunks went
    in.
    """

    @abc.abstractmethod
    def submit(self, chunk: ReadChunk) -> None:
        ...

    @abc.abstractmethod
    def poll(self) -> list[tuple[int, str, MappingResult]]:
        """Return every ``(channel, read_id, result)`` that is ready."""
        ...

    @abc.abstractmethod
    def stop_all(self) -> None:
        """Stop mapping. Reads still unresolved come out of the next ``poll`` as ended."""
        ...


class ReadMapper(abc.ABC):
    """Mapping state for a single read.

    A read mapper only ever sees its own read's chunks, one at a time and in
    order, so it needs no locking.
    """

    def __init__(self, read_id: str, channel: int) -> None:
        self.read_id = read_id
        self.channel = channel
        self.query_length = 0

    @abc.abstractmethod
    def process(self, chunk: ReadChunk) -> MapHit | None:
        """Consume a chunk. Returns a hit once the read is resolved, else None."""
        ...


class ChunkMapper(abc.ABC):
    """A registered mapper type.

    Subclasses must implement:
    - `name` (class attribute): unique name used in the registry.
    - `description` (class attribute): short description.
    - `from_config()`: build the mapper, loading its reference index.
    - `new_read()`: create per-read state.

    Optionally override:
    - `index_suffixes`: artifacts that must exist next to the index prefix.
    """

    name: str = ""
    description: str = ""
    version: str = "0.1.0"

    index_suffixes: list[str] = []

    @classmethod
    @abc.abstractmethod
    def from_config(cls, config: MapperConfig, pore_model: PoreModel) -> "ChunkMapper":
        ...

    @abc.abstractmethod
    def new_read(self, read_id: str, channel: int) -> ReadMapper:
        ...

    @classmethod
    def missing_artifacts(cls, prefix: Path) -> list[Path]:
        """Index artifacts this mapper needs that are not on disk."""
        return missing_index_artifacts(prefix, cls.index_suffixes)
