"""Reference index artifacts and sequence loading."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


class MissingIndexError(FileNotFoundError):
    """Required reference index artifacts are not on disk."""

    def __init__(self, prefix: Path, missing: list[Path]):
        self.prefix = prefix
        self.missing = missing
        names = ", ".join(str(p) for p in missing)
        super().__init__(f"Index '{prefix}' is missing: {names}")


def missing_index_artifacts(prefix: str | Path, suffixes: list[str]) -> list[Path]:
    """Return the ``prefix + suffix`` paths that do not exist."""
    prefix = str(prefix)
    return [Path(prefix + s) for s in suffixes if not Path(prefix + s).is_file()]


def require_index(prefix: str | Path, suffixes: list[str]) -> None:
    """Raise MissingIndexError unless every artifact exists."""
    missing = missing_index_artifacts(prefix, suffixes)
    if missing:
        raise MissingIndexError(Path(prefix), missing)


def read_fasta(path: Path) -> Iterator[tuple[str, str]]:
    """Yield ``(name, sequence)`` records from a FASTA file."""
    name: str | None = None
    parts: list[str] = []
    with Path(path).open() as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            if line.startswith(">"):
                if name is not None:
                    yield name, "".join(parts)
                name = line[1:].split()[0] if len(line) > 1 else ""
                parts = []
            elif name is None:
                logger.warning("%s: sequence data before first header ignored", path)
            else:
                parts.append(line.upper())
    if name is not None:
        yield name, "".join(parts)
