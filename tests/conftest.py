from __future__ import annotations

from concurrent.futures import Executor, Future
from pathlib import Path

import numpy as np
import pytest

from poreselect.engine.models import ReadChunk
from poreselect.instrument.base import InstrumentClient
from poreselect.mapping.base import MappingSubsystem
from poreselect.model.kmers import kmer_count, kmer_to_str, str_to_kmer

K = 3
LEVELS = np.array([60.0 + 2.0 * i for i in range(kmer_count(K))])


def de_bruijn(k: int, alphabet: str = "ACGT") -> str:
    """Linear de Bruijn sequence: every k-mer appears exactly once."""
    n = len(alphabet)
    a = [0] * n * k
    seq: list[int] = []

    def db(t: int, p: int) -> None:
        if t > k:
            if k % p == 0:
                seq.extend(a[1:p + 1])
        else:
            a[t] = a[t - p]
            db(t + 1, p)
            for j in range(a[t - p] + 1, n):
                a[t] = j
                db(t + 1, t)

    db(1, 1)
    cyclic = "".join(alphabet[i] for i in seq)
    return cyclic + cyclic[:k - 1]


def write_model(path: Path, k: int, levels, stdv: float = 0.5, header: str = "kmer\tlevel_mean\tlevel_stdv") -> Path:
    lines = [header]
    for kmer_id, level in enumerate(levels):
        lines.append(f"{kmer_to_str(kmer_id, k)}\t{level}\t{stdv}")
    path.write_text("\n".join(lines) + "\n")
    return path


def signal_for(seq: str, k: int = K, levels=LEVELS, scale: float = 0.9, shift: float = -20.0) -> np.ndarray:
    """Ideal one-event-per-base signal for ``seq``, distorted by an affine transform."""
    values = [levels[str_to_kmer(seq[i:i + k])] for i in range(len(seq) - k + 1)]
    return (np.array(values) + shift) * scale


def make_chunk(read_id: str, channel: int, number: int = 0, size: int = 10, read_number: int = 1) -> ReadChunk:
    return ReadChunk(
        read_id=read_id,
        channel=channel,
        read_number=read_number,
        chunk_number=number,
        start_sample=number * size,
        signal=np.arange(size, dtype=np.float32),
    )


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SyncExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class ManualExecutor(Executor):
    """Holds submitted work until ``run_next`` is called."""

    def __init__(self):
        self.queue: list[tuple[Future, object, tuple]] = []

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        self.queue.append((future, fn, args))
        return future

    def run_next(self) -> None:
        future, fn, args = self.queue.pop(0)
        future.set_result(fn(*args))


class FakeClient(InstrumentClient):
    """Scripted instrument recording every command."""

    def __init__(self, batches=None, clock=None, is_live: bool = False, starts: bool = True):
        self.batches = list(batches or [])
        self.clock = clock or FakeClock()
        self.is_live = is_live
        self.starts = starts
        self.running = True
        self.eject_allowed = True
        self.fetch_hook = None
        self.stopped: list[tuple[int, str]] = []
        self.unblocked: list[tuple[int, str]] = []
        self.resets = 0
        self._start = None

    def run(self) -> bool:
        self._start = self.clock()
        return self.starts

    @property
    def is_running(self) -> bool:
        return self.running

    def get_read_chunks(self, batch_size):
        if self.fetch_hook is not None:
            self.fetch_hook()
        if not self.batches:
            return []
        return self.batches.pop(0)[:batch_size]

    def stop_receiving_read(self, channel, read_id):
        self.stopped.append((channel, read_id))

    def unblock_read(self, channel, read_id):
        self.unblocked.append((channel, read_id))
        return 0.1

    def should_eject(self) -> bool:
        return self.eject_allowed

    def get_runtime(self) -> float:
        return 0.0 if self._start is None else self.clock() - self._start

    def reset(self) -> None:
        self.resets += 1


class FakeMapping(MappingSubsystem):
    """Mapping subsystem returning pre-queued results."""

    def __init__(self):
        self.submitted: list[ReadChunk] = []
        self.pending: list[list] = []
        self.stopped = False
        self.poll_error: Exception | None = None

    def submit(self, chunk):
        self.submitted.append(chunk)

    def poll(self):
        if self.poll_error is not None:
            raise self.poll_error
        if not self.pending:
            return []
        return self.pending.pop(0)

    def stop_all(self):
        self.stopped = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def model_path(tmp_path):
    return write_model(tmp_path / "r9_3mer.model", K, LEVELS)


@pytest.fixture
def reference():
    return de_bruijn(K)


@pytest.fixture
def index_prefix(tmp_path, reference):
    prefix = tmp_path / "ref"
    Path(str(prefix) + ".fa").write_text(f">chrTest description\n{reference[:40]}\n{reference[40:]}\n")
    return prefix
