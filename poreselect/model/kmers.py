"""Numeric k-mer encoding.

K-mers are packed two bits per base, first base most significant, so a
k-mer id always falls in ``[0, 4**k)``.
"""

from __future__ import annotations

from typing import Iterator

BASES = "ACGT"

BASE_CODES = {"A": 0, "C": 1, "G": 2, "T": 3, "U": 3}


def kmer_count(k: int) -> int:
    """Number of distinct k-mers of length ``k``."""
    return 1 << (2 * k)


def str_to_kmer(kmer: str) -> int:
    """Convert a k-mer string into its numeric id.

    Raises:
        ValueError: if the string contains anything other than A, C, G, T or U.
    """
    kmer_id = 0
    for base in kmer.upper():
        code = BASE_CODES.get(base)
        if code is None:
            raise ValueError(f"Invalid base '{base}' in k-mer '{kmer}'")
        kmer_id = (kmer_id << 2) | code
    return kmer_id


def kmer_to_str(kmer_id: int, k: int) -> str:
    """Convert a numeric id back into its k-mer string."""
    bases = []
    for _ in range(k):
        bases.append(BASES[kmer_id & 3])
        kmer_id >>= 2
    return "".join(reversed(bases))


def kmer_rev_comp(kmer_id: int, k: int) -> int:
    """Return the id of the reverse complement of ``kmer_id``."""
    rc = 0
    for _ in range(k):
        rc = (rc << 2) | (3 - (kmer_id & 3))
        kmer_id >>= 2
    return rc


def sequence_kmers(seq: str, k: int) -> Iterator[tuple[int, int]]:
    """Yield ``(position, kmer_id)`` for every valid k-mer in ``seq``.

    Windows overlapping an ambiguous base (N etc.) are skipped.
    """
    mask = kmer_count(k) - 1
    kmer_id = 0
    valid = 0
    for i, base in enumerate(seq.upper()):
        code = BASE_CODES.get(base)
        if code is None:
            valid = 0
            kmer_id = 0
            continue
        kmer_id = ((kmer_id << 2) | code) & mask
        valid += 1
        if valid >= k:
            yield i - k + 1, kmer_id


def reverse_complement(seq: str) -> str:
    """Reverse complement of a nucleotide string (ambiguous bases become N)."""
    comp = {"A": "T", "C": "G", "G": "C", "T": "A", "U": "A"}
    return "".join(comp.get(b, "N") for b in reversed(seq.upper()))
