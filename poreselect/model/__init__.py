"""Pore model: k-mer current levels, normalization and event scoring."""

from poreselect.model.kmers import (
    kmer_count,
    kmer_rev_comp,
    kmer_to_str,
    reverse_complement,
    sequence_kmers,
    str_to_kmer,
)
from poreselect.model.pore_model import (
    CalibrationFormatError,
    CalibrationSchema,
    Event,
    NormalizationError,
    NormParams,
    PoreModel,
    UnmodeledKmerError,
)

__all__ = [
    "CalibrationFormatError",
    "CalibrationSchema",
    "Event",
    "NormParams",
    "NormalizationError",
    "PoreModel",
    "UnmodeledKmerError",
    "kmer_count",
    "kmer_rev_comp",
    "kmer_to_str",
    "reverse_complement",
    "sequence_kmers",
    "str_to_kmer",
]
