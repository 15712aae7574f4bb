"""Decision engine: shared data types, channel decisions and output records.

The scheduler lives in `poreselect.engine.scheduler` and is imported from
there, since it depends on the configuration and instrument layers.
"""

from poreselect.engine.decision import ChannelDecider
from poreselect.engine.models import (
    Alignment,
    Channel,
    ChannelFilter,
    Classification,
    Decision,
    MapHit,
    MappingResult,
    ReadChunk,
    RunMode,
)
from poreselect.engine.paf import format_paf, parse_paf_line

__all__ = [
    "Alignment",
    "Channel",
    "ChannelDecider",
    "ChannelFilter",
    "Classification",
    "Decision",
    "MapHit",
    "MappingResult",
    "ReadChunk",
    "RunMode",
    "format_paf",
    "parse_paf_line",
]
