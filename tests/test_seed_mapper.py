import numpy as np
import pytest

from conftest import make_chunk, signal_for
from poreselect.config import MapperConfig
from poreselect.engine.models import Classification, ReadChunk
from poreselect.mapping import (
    ChunkMapper,
    MapperRegistry,
    MissingIndexError,
    missing_index_artifacts,
    registry,
)
from poreselect.mapping.index import read_fasta
from poreselect.mapping.seed_mapper import KmerSeedMapper
from poreselect.model import PoreModel, reverse_complement


def _chunks(read_id, signal, size):
    for n, start in enumerate(range(0, len(signal), size)):
        yield ReadChunk(
            read_id=read_id,
            channel=1,
            read_number=1,
            chunk_number=n,
            start_sample=start,
            signal=signal[start:start + size],
        )


@pytest.fixture
def mapper(model_path, index_prefix):
    config = MapperConfig(
        index=index_prefix,
        pore_model=model_path,
        min_norm_events=64,
        min_seeds=5,
        diagonal_bin=4,
    )
    return KmerSeedMapper.from_config(config, PoreModel.load(model_path))


def test_builtin_mapper_registered():
    assert registry.has("kmer_seed")
    assert registry.get("kmer_seed") is KmerSeedMapper
    info = {m["name"]: m for m in registry.info()}
    assert info["kmer_seed"]["index"] == ".fa"


def test_registry_rejects_unnamed_and_warns_on_overwrite(caplog):
    local = MapperRegistry()

    class Unnamed(ChunkMapper):
        pass

    with pytest.raises(ValueError):
        local.register(Unnamed)

    local.register(KmerSeedMapper)
    local.register(KmerSeedMapper)
    assert local.names() == ["kmer_seed"]
    assert "Mapper 'kmer_seed' registered twice" in caplog.text


def test_read_fasta(tmp_path):
    path = tmp_path / "multi.fa"
    path.write_text("ACGT\n>one first\nacgt\nTT\n\n>two\nGGG\n")
    assert list(read_fasta(path)) == [("one", "ACGTTT"), ("two", "GGG")]


def test_missing_index(tmp_path, model_path):
    prefix = tmp_path / "absent"
    assert missing_index_artifacts(prefix, [".fa"]) == [tmp_path / "absent.fa"]
    config = MapperConfig(index=prefix)
    with pytest.raises(MissingIndexError) as excinfo:
        KmerSeedMapper.from_config(config, PoreModel.load(model_path))
    assert excinfo.value.missing == [tmp_path / "absent.fa"]

    with pytest.raises(ValueError):
        KmerSeedMapper.from_config(MapperConfig(), PoreModel.load(model_path))


def test_forward_read_maps(mapper, reference):
    read = mapper.new_read("fwd", 1)
    hits = [read.process(c) for c in _chunks("fwd", signal_for(reference), 32)]

    # normalization waits for 64 events, so the first chunk cannot resolve
    assert hits[0] is None
    hit = hits[1]
    assert hit.classification is Classification.MAPPED
    aln = hit.alignment
    assert aln.target == "chrTest"
    assert aln.strand == "+"
    assert aln.target_length == len(reference)
    assert (aln.target_start, aln.target_end) == (0, len(reference))
    assert (aln.query_start, aln.query_end) == (0, 64)
    assert aln.matches == 64
    assert 0 < aln.mapq <= 60
    assert read.query_length == 64


def test_reverse_read_maps_to_minus_strand(mapper, reference):
    read = mapper.new_read("rev", 1)
    signal = signal_for(reverse_complement(reference))
    hit = read.process(ReadChunk("rev", 1, 1, 0, 0, signal))

    assert hit.classification is Classification.MAPPED
    assert hit.alignment.strand == "-"
    assert (hit.alignment.target_start, hit.alignment.target_end) == (0, len(reference))


def test_off_target_read_stays_unresolved(model_path, index_prefix):
    config = MapperConfig(index=index_prefix, min_norm_events=64, min_seeds=20, diagonal_bin=4)
    mapper = KmerSeedMapper.from_config(config, PoreModel.load(model_path))
    rng = np.random.default_rng(1)
    signal = rng.uniform(30.0, 110.0, size=128)

    read = mapper.new_read("noise", 2)
    assert all(read.process(c) is None for c in _chunks("noise", signal, 32))


def test_flat_signal_waits_for_more_events(mapper):
    read = mapper.new_read("flat", 1)
    chunk = make_chunk("flat", 1, size=100)
    chunk.signal = np.full(100, 42.0)
    assert read.process(chunk) is None
    assert read.norm is None
