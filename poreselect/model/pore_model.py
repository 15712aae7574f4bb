"""Pore model: expected current levels per k-mer and event scoring.

A calibration table maps every k-mer to the mean and spread of the current
level it produces in the pore. The model uses it to

- estimate per-read normalization parameters (an affine shift and scale that
  map a read's level distribution onto the model's), and
- score how well a normalized event matches each k-mer with a simplified
  Gaussian log-likelihood.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Sequence, Union

import numpy as np

from poreselect.model.kmers import kmer_count, kmer_rev_comp, str_to_kmer

logger = logging.getLogger(__name__)


class CalibrationFormatError(ValueError):
    """The calibration table header matches none of the known layouts."""


class UnmodeledKmerError(KeyError):
    """A k-mer without calibration data was scored."""


class NormalizationError(ValueError):
    """Normalization parameters cannot be estimated from an event batch."""


@dataclass(frozen=True)
class Event:
    """One segmented current level belonging to a read."""

    mean: float
    stdv: float | None = None
    length: int | None = None


@dataclass(frozen=True)
class NormParams:
    """Affine transform from a read's signal levels to the model's levels."""

    shift: float
    scale: float

    def apply(self, value: float) -> float:
        return self.scale * value + self.shift


EventBatch = Union[np.ndarray, Sequence[Event], Sequence[float]]


class CalibrationSchema(str, Enum):
    """Known calibration table layouts, keyed by column count."""

    LEVEL = "level"
    LEVEL_SD = "level_sd"
    FULL = "full"
    FULL_LAMBDA = "full_lambda"

    @property
    def columns(self) -> tuple[str, ...]:
        return _SCHEMA_COLUMNS[self]

    @property
    def has_lambda(self) -> bool:
        return "ig_lambda" in self.columns

    @classmethod
    def from_column_count(cls, count: int) -> "CalibrationSchema":
        for schema in cls:
            if len(schema.columns) == count:
                return schema
        supported = ", ".join(str(len(s.columns)) for s in cls)
        raise CalibrationFormatError(
            f"Unsupported calibration table with {count} columns (expected one of {supported})"
        )

    @classmethod
    def from_header(cls, header: str) -> "CalibrationSchema":
        return cls.from_column_count(len(header.split()))


_SCHEMA_COLUMNS: dict[CalibrationSchema, tuple[str, ...]] = {
    CalibrationSchema.LEVEL: ("kmer", "level_mean", "level_stdv"),
    CalibrationSchema.LEVEL_SD: ("kmer", "level_mean", "level_stdv", "sd_mean"),
    CalibrationSchema.FULL: (
        "kmer", "level_mean", "level_stdv", "sd_mean", "sd_stdv", "weight",
    ),
    CalibrationSchema.FULL_LAMBDA: (
        "kmer", "level_mean", "level_stdv", "sd_mean", "sd_stdv", "ig_lambda", "weight",
    ),
}


def event_means(events: EventBatch) -> np.ndarray:
    """Return the event levels of a batch as a float64 array."""
    if isinstance(events, np.ndarray):
        return events.astype(np.float64, copy=False)
    return np.fromiter(
        (e.mean if isinstance(e, Event) else e for e in events),
        dtype=np.float64,
        count=len(events),
    )


class PoreModel:
    """K-mer current level model loaded from a calibration table.

    Tables are indexed by numeric k-mer id. K-mers missing from the
    calibration file stay unmodeled (NaN level, ``modeled[id] == False``) and
    are never scored. The model is read-only once loaded and can be shared
    between mapping threads.
    """

    def __init__(self) -> None:
        self.k = 0
        self.schema: CalibrationSchema | None = None
        self.complement = False
        self.means = np.empty(0)
        self.vars_x2 = np.empty(0)
        self.lognorm_denoms = np.empty(0)
        self.modeled = np.zeros(0, dtype=bool)
        self.ig_lambda = -1.0
        self.model_mean = math.nan
        self.model_stdv = math.nan
        self._loaded = False

    @classmethod
    def load(
        cls,
        path: str | Path,
        complement: bool = False,
        k: int | None = None,
        schema: CalibrationSchema | None = None,
    ) -> "PoreModel":
        """Load a calibration table.

        Malformed rows and k-mers outside ``[0, 4**k)`` are logged and
        skipped. An empty or unparseable table returns a model whose
        ``is_loaded()`` is False; callers must check it.

        Args:
            path: Whitespace-delimited table with one header line.
            complement: Store each row under the reverse complement of its k-mer.
            k: K-mer length. Defaults to the most common k-mer length in the table.
            schema: Column layout. Detected from the header when omitted.

        Raises:
            FileNotFoundError: if ``path`` does not exist.
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Pore model not found: {path}")

        model = cls()
        model.complement = complement

        with path.open() as fh:
            header = fh.readline()
            if not header.strip():
                logger.error("Pore model %s is empty", path)
                return model
            try:
                model.schema = schema or CalibrationSchema.from_header(header)
            except CalibrationFormatError as exc:
                logger.error("Cannot load pore model %s: %s", path, exc)
                return model

            rows = list(model._parse_rows(fh, path))

        if not rows:
            logger.error("Pore model %s has no usable rows", path)
            return model

        if k is None:
            # majority k-mer length
            k = Counter(len(kmer) for _, kmer, _ in rows).most_common(1)[0][0]
        model._populate(rows, k, path)
        return model

    def _parse_rows(self, lines, path: Path):
        width = len(self.schema.columns)
        for lineno, line in enumerate(lines, start=2):
            fields = line.split()
            if not fields:
                continue
            if len(fields) < width:
                logger.warning(
                    "%s:%d: expected %d columns, found %d; row skipped",
                    path, lineno, width, len(fields),
                )
                continue
            try:
                values = [float(v) for v in fields[1:width]]
            except ValueError:
                logger.warning("%s:%d: non-numeric value; row skipped", path, lineno)
                continue
            yield lineno, fields[0], dict(zip(self.schema.columns[1:], values))

    def _populate(self, rows, k: int, path: Path) -> None:
        self.k = k
        count = kmer_count(k)
        self.means = np.full(count, np.nan)
        self.vars_x2 = np.full(count, np.nan)
        self.lognorm_denoms = np.full(count, np.nan)
        self.modeled = np.zeros(count, dtype=bool)

        for lineno, kmer_str, values in rows:
            try:
                kmer = str_to_kmer(kmer_str)
            except ValueError as exc:
                logger.warning("%s:%d: %s; row skipped", path, lineno, exc)
                continue
            if len(kmer_str) != k or not 0 <= kmer < count:
                logger.warning(
                    "%s:%d: k-mer '%s' (id %d) is invalid for k=%d; row skipped",
                    path, lineno, kmer_str, kmer, k,
                )
                continue

            if self.complement:
                kmer = kmer_rev_comp(kmer, k)

            stdv = values["level_stdv"]
            if stdv <= 0:
                logger.warning("%s:%d: non-positive level_stdv; row skipped", path, lineno)
                continue

            self.means[kmer] = values["level_mean"]
            self.vars_x2[kmer] = 2 * stdv * stdv
            self.lognorm_denoms[kmer] = math.log(math.sqrt(math.pi * self.vars_x2[kmer]))
            self.modeled[kmer] = True
            if "ig_lambda" in values:
                self.ig_lambda = values["ig_lambda"]

        if not self.modeled.any():
            logger.error("Pore model %s has no valid k-mers", path)
            return

        loaded = self.means[self.modeled]
        self.model_mean = float(loaded.mean())
        self.model_stdv = float(loaded.std())
        self._loaded = True

        logger.info(
            "Loaded %d/%d %d-mers from %s (mean=%.3f, stdv=%.3f)",
            len(loaded), count, k, path, self.model_mean, self.model_stdv,
        )

    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def kmer_count(self) -> int:
        return len(self.modeled)

    def is_modeled(self, kmer_id: int) -> bool:
        return 0 <= kmer_id < len(self.modeled) and bool(self.modeled[kmer_id])

    def missing_kmers(self) -> np.ndarray:
        """Ids of k-mers that have no calibration data."""
        return np.flatnonzero(~self.modeled)

    def event_match_prob(self, event: Event | float, kmer_id: int) -> float:
        """Log-likelihood (up to a constant) that ``event`` came from ``kmer_id``.

        Higher is better. The Gaussian's ``log(2)`` term is omitted, so
        values are only comparable with each other.
        """
        if not self.is_modeled(kmer_id):
            raise UnmodeledKmerError(kmer_id)
        x = event.mean if isinstance(event, Event) else event
        return float(
            -((x - self.means[kmer_id]) ** 2) / self.vars_x2[kmer_id]
            - self.lognorm_denoms[kmer_id]
        )

    def match_probs(self, events: EventBatch) -> np.ndarray:
        """Score every event against every k-mer.

        Returns an ``(n_events, 4**k)`` array; unmodeled k-mers score ``-inf``.
        """
        x = event_means(events)[:, np.newaxis]
        with np.errstate(invalid="ignore"):
            probs = -((x - self.means) ** 2) / self.vars_x2 - self.lognorm_denoms
        return np.where(self.modeled, probs, -np.inf)

    def best_kmers(self, events: EventBatch, block_cells: int = 1 << 20) -> np.ndarray:
        """Id of the highest scoring k-mer for each event.

        Same as ``match_probs(events).argmax(axis=1)`` but scored in blocks of
        at most ``block_cells`` matrix cells, so memory stays bounded for large k.
        """
        levels = event_means(events)
        if levels.size == 0:
            return np.empty(0, dtype=np.intp)
        rows = max(1, block_cells // self.kmer_count)
        return np.concatenate([
            self.match_probs(levels[start:start + rows]).argmax(axis=1)
            for start in range(0, levels.size, rows)
        ])

    def get_norm_params(self, events: EventBatch) -> NormParams:
        """Fit the shift/scale mapping ``events`` onto the model's level distribution."""
        if not self._loaded:
            raise NormalizationError("Pore model is not loaded")
        levels = event_means(events)
        if levels.size == 0:
            raise NormalizationError("Cannot normalize an empty event batch")

        events_mean = levels.mean()
        events_stdv = levels.std()
        if not events_stdv > 0:
            raise NormalizationError("Event levels have zero variance")

        scale = self.model_stdv / events_stdv
        shift = self.model_mean - scale * events_mean
        return NormParams(shift=float(shift), scale=float(scale))

    def normalize(self, events: EventBatch, norm: NormParams | None = None) -> NormParams:
        """Normalize ``events`` in place.

        Float arrays are updated in place; lists have each item replaced.
        When ``norm`` is None the parameters are fitted on the same batch.

        Returns:
            The parameters that were applied.

        Raises:
            NormalizationError: ``events`` is a numpy array without a float dtype.
        """
        if isinstance(events, np.ndarray) and not np.issubdtype(events.dtype, np.floating):
            raise NormalizationError(f"Cannot normalize {events.dtype} events in place; use a float array")
        if norm is None:
            norm = self.get_norm_params(events)

        if isinstance(events, np.ndarray):
            events *= norm.scale
            events += norm.shift
        else:
            for i, e in enumerate(events):
                if isinstance(e, Event):
                    events[i] = replace(e, mean=norm.apply(e.mean))
                else:
                    events[i] = norm.apply(e)
        return norm
