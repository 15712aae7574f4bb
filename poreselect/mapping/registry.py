"""Lookup of mapper implementations by the name used in run configs."""

from __future__ import annotations

import logging
from typing import Type

from poreselect.mapping.base import ChunkMapper

logger = logging.getLogger(__name__)


class MapperRegistry:
    """Maps ``mapper.name`` config values to ChunkMapper classes."""

    def __init__(self) -> None:
        self._by_name: dict[str, Type[ChunkMapper]] = {}

    def register(self, mapper_cls: Type[ChunkMapper]) -> Type[ChunkMapper]:
        """Make ``mapper_cls`` selectable under its ``name``.

        Returns the class unchanged, so mapper modules apply it as a class
        decorator::

            @registry.register
            class MinimizerMapper(ChunkMapper):
                name = "minimizer"
        """
        name = mapper_cls.name
        if not name:
            raise ValueError(f"Mapper class {mapper_cls.__name__} has no name")
        previous = self._by_name.get(name)
        if previous is not None:
            logger.warning(
                "Mapper '%s' registered twice; %s replaces %s",
                name, mapper_cls.__qualname__, previous.__qualname__,
            )
        self._by_name[name] = mapper_cls
        return mapper_cls

    def get(self, name: str) -> Type[ChunkMapper] | None:
        return self._by_name.get(name)

    def has(self, name: str) -> bool:
        return name in self._by_name

    def names(self) -> list[str]:
        return sorted(self._by_name)

    def info(self) -> list[dict[str, str]]:
        """One row per mapper for the ``mappers`` listing, sorted by name.

        ``index`` lists the files a mapper expects next to the index prefix.
        """
        return [
            {
                "name": name,
                "description": self._by_name[name].description,
                "version": self._by_name[name].version,
                "index": ", ".join(self._by_name[name].index_suffixes) or "-",
            }
            for name in self.names()
        ]
