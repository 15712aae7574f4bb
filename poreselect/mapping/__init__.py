"""Mapping subsystem.

Mappers are plugins registered by name. The scheduler only sees the
`MappingSubsystem` interface, implemented by `MapPool`.

Usage:
    from poreselect.mapping import MapPool, registry

    mapper_cls = registry.get("kmer_seed")
    pool = MapPool(mapper_cls.from_config(config.mapper, pore_model), threads=4)
    pool.submit(chunk)
    for channel, read_id, result in pool.poll():
        ...
"""

from poreselect.mapping.base import ChunkMapper, MappingSubsystem, ReadMapper
from poreselect.mapping.index import MissingIndexError, missing_index_artifacts, require_index
from poreselect.mapping.registry import MapperRegistry

# Singleton registry
registry = MapperRegistry()

# Auto-register built-in mappers
from poreselect.mapping import seed_mapper  # noqa: E402, F401
from poreselect.mapping.pool import MapPool  # noqa: E402

__all__ = [
    "ChunkMapper",
    "MapPool",
    "MapperRegistry",
    "MappingSubsystem",
    "MissingIndexError",
    "ReadMapper",
    "missing_index_artifacts",
    "registry",
    "require_index",
]
