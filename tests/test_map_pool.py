import logging

from conftest import FakeClock, ManualExecutor, SyncExecutor, make_chunk
from poreselect.engine.models import Alignment, Classification, MapHit
from poreselect.mapping.base import ChunkMapper, ReadMapper
from poreselect.mapping.pool import MapPool

HIT = MapHit(
    Classification.MAPPED,
    Alignment("chr1", "+", 1000, 10, 60, 0, 50, 12, 50, 60),
)


class ScriptedRead(ReadMapper):
    def __init__(self, read_id, channel, script):
        super().__init__(read_id, channel)
        self.script = script
        self.seen = []

    def process(self, chunk):
        self.seen.append(chunk.chunk_number)
        self.query_length += len(chunk)
        outcome = self.script.get(chunk.chunk_number)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class ScriptedMapper(ChunkMapper):
    """Resolves reads on the chunk numbers listed per read id."""

    name = "scripted"

    def __init__(self, scripts=None):
        self.scripts = scripts or {}
        self.reads = {}

    @classmethod
    def from_config(cls, config, pore_model):
        return cls()

    def new_read(self, read_id, channel):
        read = ScriptedRead(read_id, channel, self.scripts.get(read_id, {}))
        self.reads[read_id] = read
        return read


def _drain(pool, rounds=10):
    results = []
    for _ in range(rounds):
        results.extend(pool.poll())
    return results


def test_hit_resolves_read():
    mapper = ScriptedMapper({"a": {1: HIT}})
    pool = MapPool(mapper, executor=SyncExecutor())
    for n in range(3):
        pool.submit(make_chunk("a", 1, n))

    results = _drain(pool)
    assert len(results) == 1
    channel, read_id, result = results[0]
    assert (channel, read_id) == (1, "a")
    assert result.classification is Classification.MAPPED
    assert result.alignment == HIT.alignment
    assert result.chunk_count == 2
    assert result.query_length == 20
    # chunks after resolution are ignored
    assert mapper.reads["a"].seen == [0, 1]


def test_max_chunks_without_hit_is_unmapped():
    pool = MapPool(ScriptedMapper(), max_chunks=3, executor=SyncExecutor())
    for n in range(5):
        pool.submit(make_chunk("a", 1, n))

    results = _drain(pool)
    assert [r.classification for _, _, r in results] == [Classification.UNMAPPED]
    assert results[0][2].chunk_count == 3


def test_new_read_ends_unresolved_previous_read():
    mapper = ScriptedMapper({"b": {0: HIT}})
    pool = MapPool(mapper, executor=SyncExecutor())
    pool.submit(make_chunk("a", 4, 0))
    pool.submit(make_chunk("b", 4, 0, read_number=2))

    results = _drain(pool)
    assert [(rid, r.classification) for _, rid, r in results] == [
        ("a", Classification.ENDED),
        ("b", Classification.MAPPED),
    ]
    assert results[0][2].chunk_count == 1


def test_resolved_read_does_not_end_again():
    mapper = ScriptedMapper({"a": {0: HIT}})
    pool = MapPool(mapper, executor=SyncExecutor())
    pool.submit(make_chunk("a", 1, 0))
    assert len(_drain(pool)) == 1

    pool.submit(make_chunk("b", 1, 0))
    assert _drain(pool) == []


def test_one_task_in_flight_per_channel():
    executor = ManualExecutor()
    mapper = ScriptedMapper({"a": {1: HIT}})
    pool = MapPool(mapper, executor=executor)
    pool.submit(make_chunk("a", 1, 0))
    pool.submit(make_chunk("a", 1, 1))
    pool.submit(make_chunk("x", 2, 0))

    assert len(executor.queue) == 2
    assert pool.in_flight == 2
    assert pool.poll() == []

    executor.run_next()
    assert pool.poll() == []
    assert len(executor.queue) == 2  # channel 2 still pending, chunk 1 dispatched

    executor.run_next()
    executor.run_next()
    results = pool.poll()
    assert [(ch, rid) for ch, rid, _ in results] == [(1, "a")]
    assert mapper.reads["a"].seen == [0, 1]


def test_wait_and_map_times_accumulate():
    clock = FakeClock()
    executor = ManualExecutor()
    pool = MapPool(ScriptedMapper({"a": {0: HIT}}), executor=executor, clock=clock)
    pool.submit(make_chunk("a", 1, 0))
    clock.advance(0.5)
    executor.run_next()

    (_, _, result), = pool.poll()
    assert result.map_time == 0.0
    assert result.wait_time == 0.0

    clock2 = FakeClock()
    executor2 = ManualExecutor()
    pool2 = MapPool(ScriptedMapper({"a": {1: HIT}}), executor=executor2, clock=clock2)
    pool2.submit(make_chunk("a", 1, 0))
    pool2.submit(make_chunk("a", 1, 1))
    clock2.advance(0.25)
    executor2.run_next()
    pool2.poll()
    executor2.run_next()
    (_, _, result2), = pool2.poll()
    assert result2.wait_time == 0.25


def test_mapper_error_drops_read(caplog):
    mapper = ScriptedMapper({"a": {0: RuntimeError("boom")}, "c": {0: HIT}})
    pool = MapPool(mapper, executor=SyncExecutor())
    pool.submit(make_chunk("a", 1, 0))
    pool.submit(make_chunk("a", 1, 1))
    pool.submit(make_chunk("c", 2, 0))

    with caplog.at_level(logging.ERROR):
        results = _drain(pool)

    assert [rid for _, rid, _ in results] == ["c"]
    assert mapper.reads["a"].seen == [0]
    assert "read a" in caplog.text

    # a later read on the failed channel maps normally without an ended record
    mapper.scripts["b"] = {0: HIT}
    pool.submit(make_chunk("b", 1, 0))
    assert [rid for _, rid, _ in _drain(pool)] == ["b"]


def test_stop_all_drops_further_chunks():
    mapper = ScriptedMapper()
    pool = MapPool(mapper, executor=SyncExecutor())
    pool.submit(make_chunk("a", 1, 0))
    pool.stop_all()
    pool.stop_all()

    pool.submit(make_chunk("a", 1, 1))
    # the open read is ended once, and its later chunk is never mapped
    assert [(rid, r.classification) for _, rid, r in pool.poll()] == [("a", Classification.ENDED)]
    assert pool.poll() == []
    assert mapper.reads["a"].seen == [0]


def test_stop_all_ends_open_reads():
    executor = ManualExecutor()
    mapper = ScriptedMapper({"done": {0: HIT}})
    pool = MapPool(mapper, max_chunks=5, executor=executor)
    pool.submit(make_chunk("open", 2, 0))
    pool.submit(make_chunk("open", 2, 1))
    pool.submit(make_chunk("done", 1, 0))
    pool.submit(make_chunk("queued", 3, 0))
    executor.run_next()
    assert pool.poll() == []
    executor.run_next()

    # "done" has its hit but was never polled; "queued" never ran
    pool.stop_all()
    results = {rid: r for _, rid, r in pool.poll()}

    assert results["done"].classification is Classification.MAPPED
    assert results["open"].classification is Classification.ENDED
    assert results["open"].chunk_count == 2
    assert results["queued"].classification is Classification.ENDED
    assert pool.in_flight == 0
