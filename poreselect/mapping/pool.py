"""Thread pool running per-read mappers behind a non-blocking interface.

Each channel has its own chunk queue and at most one mapping task in
flight, so a read's chunks are mapped one at a time in arrival order while
different channels map in parallel. ``submit`` and ``poll`` only touch
queues and completed futures; they never wait on a worker.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from poreselect.engine.models import Classification, MapHit, MappingResult, ReadChunk
from poreselect.mapping.base import ChunkMapper, MappingSubsystem, ReadMapper

logger = logging.getLogger(__name__)


@dataclass
class _ReadTask:
    read_id: str
    mapper: ReadMapper
    chunks: int = 0
    resolved: bool = False
    map_time: float = 0.0
    wait_time: float = 0.0


@dataclass
class _ChannelQueue:
    pending: deque[tuple[ReadChunk, float]] = field(default_factory=deque)
    task: _ReadTask | None = None
    future: Future | None = None


class MapPool(MappingSubsystem):
    """Mapping subsystem backed by a thread pool.

    A read resolves when its mapper returns a hit, when it reaches
    ``max_chunks`` chunks without one (unmapped), or when a chunk from a
    new read arrives on the same channel first (ended). Reads still open
    when the pool stops are ended too. Later chunks of a resolved read are
    ignored.
    """

    def __init__(
        self,
        mapper: ChunkMapper,
        threads: int = 3,
        max_chunks: int = 10,
        executor: Executor | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.mapper = mapper
        self.max_chunks = max_chunks
        self._executor = executor or ThreadPoolExecutor(
            max_workers=threads, thread_name_prefix="poreselect-map"
        )
        self._clock = clock
        self._channels: dict[int, _ChannelQueue] = {}
        self._ready: list[tuple[int, str, MappingResult]] = []
        self._stopped = False

    @property
    def in_flight(self) -> int:
        return sum(1 for q in self._channels.values() if q.future is not None)

    def submit(self, chunk: ReadChunk) -> None:
        if self._stopped:
            logger.debug("Pool stopped; dropping chunk %d of %s", chunk.chunk_number, chunk.read_id)
            return
        queue = self._channels.setdefault(chunk.channel, _ChannelQueue())
        queue.pending.append((chunk, self._clock()))
        self._dispatch(chunk.channel, queue)

    def poll(self) -> list[tuple[int, str, MappingResult]]:
        for channel, queue in self._channels.items():
            if queue.future is not None and queue.future.done():
                self._collect(channel, queue)
            self._dispatch(channel, queue)
        ready, self._ready = self._ready, []
        return ready

    def stop_all(self) -> None:
        """Stop mapping. Reads left unresolved are reported as ended by the next ``poll``."""
        if self._stopped:
            return
        self._stopped = True
        self._executor.shutdown(wait=True, cancel_futures=True)
        for channel, queue in self._channels.items():
            future = queue.future
            if future is not None and future.done() and not future.cancelled():
                self._collect(channel, queue)
            task = queue.task
            if task is not None and not task.resolved:
                self._emit(channel, task, MapHit(Classification.ENDED))
        self._channels.clear()
        logger.info("Mapping pool stopped")

    def _collect(self, channel: int, queue: _ChannelQueue) -> None:
        future, queue.future = queue.future, None
        task = queue.task
        try:
            hit = future.result()
        except Exception:
            logger.exception("Mapper failed on read %s (channel %d); read dropped", task.read_id, channel)
            task.resolved = True
            return

        if hit is None and task.chunks >= self.max_chunks:
            hit = MapHit(Classification.UNMAPPED)
        if hit is not None:
            self._emit(channel, task, hit)

    def _dispatch(self, channel: int, queue: _ChannelQueue) -> None:
        while queue.future is None and queue.pending:
            chunk, submitted = queue.pending.popleft()
            task = queue.task
            if task is None or chunk.read_id != task.read_id:
                if task is not None and not task.resolved:
                    self._emit(channel, task, MapHit(Classification.ENDED))
                task = queue.task = _ReadTask(
                    chunk.read_id, self.mapper.new_read(chunk.read_id, channel)
                )
            if task.resolved:
                continue
            task.chunks += 1
            task.wait_time += self._clock() - submitted
            queue.future = self._executor.submit(self._map_chunk, task, chunk)

    def _map_chunk(self, task: _ReadTask, chunk: ReadChunk) -> MapHit | None:
        t0 = self._clock()
        try:
            return task.mapper.process(chunk)
        finally:
            task.map_time += self._clock() - t0

    def _emit(self, channel: int, task: _ReadTask, hit: MapHit) -> None:
        task.resolved = True
        self._ready.append((channel, task.read_id, MappingResult(
            read_id=task.read_id,
            channel=channel,
            chunk_count=task.chunks,
            classification=hit.classification,
            query_length=task.mapper.query_length,
            alignment=hit.alignment,
            map_time=task.map_time,
            wait_time=task.wait_time,
        )))
