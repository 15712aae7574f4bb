"""Run configuration.

A run is described by a ``RealtimeConfig``. It can be loaded from a JSON
file and then overridden from the command line::

    config = load_config(Path("run.json"), {"mode": "enrich", "mapper": {"threads": 8}})
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from poreselect.engine.models import ChannelFilter, RunMode

DEFAULT_LOG_LEVEL = "WARNING"


class MapperConfig(BaseModel):
    """Mapping subsystem settings."""

    name: str = Field(default="kmer_seed", description="Registered mapper name")
    index: Path | None = Field(default=None, description="Reference index prefix")
    pore_model: Path | None = Field(default=None, description="Calibration table path")
    complement: bool = Field(
        default=False, description="Load the pore model under reverse-complement k-mers"
    )
    threads: int = Field(default=3, ge=1, description="Mapping worker threads")
    max_chunks: int = Field(
        default=10, ge=1, description="Chunks after which an unresolved read counts as unmapped"
    )
    min_norm_events: int = Field(
        default=100, ge=2, description="Events used to fit a read's normalization"
    )
    min_seeds: int = Field(default=5, ge=1, description="Seed votes needed to call a read mapped")
    min_ratio: float = Field(
        default=2.0, ge=1.0, description="Best/second-best vote ratio needed to call a read mapped"
    )
    diagonal_bin: int = Field(default=100, ge=1, description="Diagonal bucket width in bases")


class SimulatorConfig(BaseModel):
    """Replay settings for simulated runs."""

    signal_table: Path = Field(..., description="TSV of read_id, channel, comma-separated signal")
    chunk_size: int = Field(default=400, ge=1, description="Signal values per chunk")
    chunk_time: float = Field(default=1.0, gt=0, description="Seconds between chunks of a read")
    unblock_delay: float = Field(
        default=0.1, ge=0, description="Seconds before the next read starts after an eject"
    )
    max_unblocks_per_chunk: int | None = Field(
        default=None, ge=0, description="Ejects accepted per chunk window (None: unlimited)"
    )


class LiveConfig(BaseModel):
    """Connection settings for a live instrument."""

    host: str = Field(default="127.0.0.1", description="MinKNOW host")
    port: int = Field(default=8000, description="MinKNOW port")
    first_channel: int = Field(default=1, ge=1)
    last_channel: int = Field(default=512, ge=1)
    unblock_duration: float = Field(default=0.1, gt=0, description="Seconds of reversed voltage")
    event_detector: str | None = Field(
        default=None, description="'module:function' converting raw samples to event levels"
    )


class RealtimeConfig(BaseModel):
    """Configuration for one adaptive sampling run."""

    mode: RunMode = Field(default=RunMode.DEPLETE, description="Which reads to eject")
    channel_filter: ChannelFilter = Field(
        default=ChannelFilter.ALL, description="Channels the controller acts on"
    )
    chunk_time: float = Field(default=1.0, gt=0, description="Minimum scheduling cycle in seconds")
    batch_size: int = Field(default=512, ge=1, description="Maximum chunks fetched per cycle")
    duration: float | None = Field(
        default=None, gt=0, description="Stop after this many seconds of runtime"
    )
    mapper: MapperConfig = Field(default_factory=MapperConfig)
    simulator: SimulatorConfig | None = None
    live: LiveConfig = Field(default_factory=LiveConfig)


def merge_overrides(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into ``base``, ignoring None values.

    A nested section whose overrides are all None is not created.
    """
    merged = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict):
            section = merge_overrides(merged.get(key) or {}, value)
            if section or key in merged:
                merged[key] = section
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None, overrides: dict[str, Any] | None = None) -> RealtimeConfig:
    """Build a config from an optional JSON file plus overrides.

    Raises:
        FileNotFoundError: if ``path`` is given but missing.
        pydantic.ValidationError: if the merged settings are invalid.
    """
    data: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        data = json.loads(path.read_text())
    return RealtimeConfig.model_validate(merge_overrides(data, overrides or {}))


def get_log_level() -> str:
    """Default log level, from ``PORESELECT_LOG_LEVEL``."""
    return os.getenv("PORESELECT_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
