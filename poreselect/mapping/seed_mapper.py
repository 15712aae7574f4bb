"""Built-in mapper voting event k-mers into reference diagonals.

Each normalized event is assigned the k-mer whose model level it matches
best. Every reference occurrence of that k-mer (either strand) casts a vote
for the bucket ``(target, strand, (ref_pos - event_index) // diagonal_bin)``.
A read maps once one bucket has enough votes and clearly beats the rest.

The seed table is held in memory, so this suits small targets such as
panels of genes or a few microbial genomes.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from pathlib import Path

import numpy as np

from poreselect.config import MapperConfig
from poreselect.engine.models import Alignment, Classification, MapHit, ReadChunk
from poreselect.mapping import registry
from poreselect.mapping.base import ChunkMapper, ReadMapper
from poreselect.mapping.index import read_fasta, require_index
from poreselect.model.kmers import reverse_complement, sequence_kmers
from poreselect.model.pore_model import NormalizationError, NormParams, PoreModel

logger = logging.getLogger(__name__)

# k-mers occurring more often than this are too repetitive to seed
MAX_SEED_HITS = 64


@registry.register
class KmerSeedMapper(ChunkMapper):
    name = "kmer_seed"
    description = "Vote best-matching event k-mers into reference diagonals"
    version = "0.1.0"
    index_suffixes = [".fa"]

    def __init__(
        self,
        pore_model: PoreModel,
        targets: list[tuple[str, str]],
        min_norm_events: int = 100,
        min_seeds: int = 5,
        min_ratio: float = 2.0,
        diagonal_bin: int = 100,
    ):
        self.pore_model = pore_model
        self.min_norm_events = min_norm_events
        self.min_seeds = min_seeds
        self.min_ratio = min_ratio
        self.diagonal_bin = diagonal_bin
        self.targets = [(name, len(seq)) for name, seq in targets]

        k = pore_model.k
        seeds: dict[int, list[tuple[int, str, int]]] = defaultdict(list)
        for ti, (_, seq) in enumerate(targets):
            for pos, kmer in sequence_kmers(seq, k):
                seeds[kmer].append((ti, "+", pos))
            for pos, kmer in sequence_kmers(reverse_complement(seq), k):
                seeds[kmer].append((ti, "-", pos))
        self.seeds = {kmer: hits for kmer, hits in seeds.items() if len(hits) <= MAX_SEED_HITS}

        logger.info(
            "Seed table: %d targets, %d/%d %d-mers usable",
            len(self.targets), len(self.seeds), len(seeds), k,
        )

    @classmethod
    def from_config(cls, config: MapperConfig, pore_model: PoreModel) -> "KmerSeedMapper":
        if config.index is None:
            raise ValueError("kmer_seed mapper needs an index prefix")
        require_index(config.index, cls.index_suffixes)
        fasta = Path(str(config.index) + ".fa")
        targets = list(read_fasta(fasta))
        if not targets:
            raise ValueError(f"No sequences in {fasta}")
        return cls(
            pore_model,
            targets,
            min_norm_events=config.min_norm_events,
            min_seeds=config.min_seeds,
            min_ratio=config.min_ratio,
            diagonal_bin=config.diagonal_bin,
        )

    def new_read(self, read_id: str, channel: int) -> "SeedReadMapper":
        return SeedReadMapper(self, read_id, channel)


class SeedReadMapper(ReadMapper):
    """Per-read seed votes."""

    def __init__(self, index: KmerSeedMapper, read_id: str, channel: int):
        super().__init__(read_id, channel)
        self.index = index
        self.norm: NormParams | None = None
        self._pending: list[np.ndarray] = []
        self._events_seen = 0
        self._votes: Counter = Counter()
        self._spans: dict[tuple, list[int]] = {}

    def process(self, chunk: ReadChunk) -> MapHit | None:
        events = np.array(chunk.signal, dtype=np.float64)
        self.query_length += len(events)
        model = self.index.pore_model

        if self.norm is None:
            self._pending.append(events)
            events = np.concatenate(self._pending)
            if len(events) < self.index.min_norm_events:
                return None
            try:
                self.norm = model.get_norm_params(events)
            except NormalizationError as exc:
                logger.debug("Read %s not normalizable yet: %s", self.read_id, exc)
                return None
            self._pending = []

        model.normalize(events, self.norm)
        self._vote(model.best_kmers(events))
        return self._resolve()

    def _vote(self, kmers: np.ndarray) -> None:
        offset = self._events_seen
        self._events_seen += len(kmers)
        bin_width = self.index.diagonal_bin
        for i, kmer in enumerate(kmers.tolist()):
            qpos = offset + i
            for ti, strand, pos in self.index.seeds.get(kmer, ()):
                key = (ti, strand, (pos - qpos) // bin_width)
                self._votes[key] += 1
                span = self._spans.get(key)
                if span is None:
                    self._spans[key] = [qpos, qpos, pos, pos]
                else:
                    span[0] = min(span[0], qpos)
                    span[1] = max(span[1], qpos)
                    span[2] = min(span[2], pos)
                    span[3] = max(span[3], pos)

    def _resolve(self) -> MapHit | None:
        if not self._votes:
            return None
        top = self._votes.most_common(2)
        key, best = top[0]
        second = top[1][1] if len(top) > 1 else 0
        if best < self.index.min_seeds or best < self.index.min_ratio * second:
            return None

        ti, strand, _ = key
        name, length = self.index.targets[ti]
        k = self.index.pore_model.k
        qstart, qlast, tstart, tlast = self._spans[key]
        tend = tlast + k
        if strand == "-":
            tstart, tend = length - tend, length - tstart
        mapq = 60 if second == 0 else min(60, int(60 * (1 - second / best)))

        return MapHit(Classification.MAPPED, Alignment(
            target=name,
            strand=strand,
            target_length=length,
            target_start=tstart,
            target_end=tend,
            query_start=qstart,
            query_end=qlast + 1,
            matches=best,
            block_length=max(tend - tstart, qlast + 1 - qstart),
            mapq=mapq,
        ))
