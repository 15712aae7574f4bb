"""CLI entry point for poreselect."""

import logging
import statistics
import sys
from collections import Counter
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from poreselect import __version__
from poreselect.config import RealtimeConfig, get_log_level, load_config
from poreselect.engine.models import ChannelFilter, RunMode
from poreselect.engine.paf import parse_paf_line
from poreselect.engine.scheduler import RealtimeScheduler, RunStatus, RunSummary
from poreselect.instrument import InstrumentClient, LiveInstrument, SimulatedInstrument
from poreselect.mapping import MapPool, MissingIndexError, registry
from poreselect.model import PoreModel

console = Console()
err_console = Console(stderr=True)
app = typer.Typer(
    name="poreselect",
    help="poreselect - real-time adaptive sampling for nanopore sequencers.\n\n"
    "Keeps or ejects reads while they are being sequenced, based on partial mapping.",
    add_completion=False,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

logger = logging.getLogger(__name__)


def configure_logging(level: str | None) -> None:
    """Send log records to stderr through rich; stdout carries PAF output."""
    logging.basicConfig(
        level=(level or get_log_level()).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def fail(message: str, title: str = "Error") -> None:
    """Print an error panel and exit with status 1."""
    err_console.print(Panel(message, title=f"[red]{title}[/red]", border_style="red"))
    raise typer.Exit(1)


def build_config(config_path: Optional[Path], overrides: dict[str, Any]) -> RealtimeConfig:
    try:
        return load_config(config_path, overrides)
    except FileNotFoundError as e:
        fail(str(e))
    except ValidationError as e:
        fail(str(e), title="Invalid configuration")


def load_pore_model(path: Optional[Path], complement: bool) -> PoreModel:
    if path is None:
        fail("A pore model is required (--pore-model)")
    try:
        model = PoreModel.load(path, complement=complement)
    except FileNotFoundError as e:
        fail(str(e))
    if not model.is_loaded():
        fail(f"Pore model {path} could not be loaded; see log for details")
    return model


def build_mapping(config: RealtimeConfig) -> MapPool:
    """Check preconditions and build the mapping pool. Exits on failure."""
    mapper_cls = registry.get(config.mapper.name)
    if mapper_cls is None:
        fail(
            f"Unknown mapper '{config.mapper.name}'. "
            f"Available: {', '.join(registry.names())}"
        )
    if config.mapper.index is None:
        fail("A reference index prefix is required (--index)")
    missing = mapper_cls.missing_artifacts(config.mapper.index)
    if missing:
        fail(
            "Missing index artifacts:\n" + "\n".join(f"  • {p}" for p in missing),
            title="Index not found",
        )

    model = load_pore_model(config.mapper.pore_model, config.mapper.complement)
    try:
        mapper = mapper_cls.from_config(config.mapper, model)
    except (MissingIndexError, ValueError) as e:
        fail(str(e))
    return MapPool(mapper, threads=config.mapper.threads, max_chunks=config.mapper.max_chunks)


def run_scheduler(config: RealtimeConfig, client: InstrumentClient, pool: MapPool) -> None:
    scheduler = RealtimeScheduler(config, client, pool)
    summary = scheduler.run()
    print_summary(summary)
    if summary.status in (RunStatus.FAULTED, RunStatus.FAILED_TO_START):
        raise typer.Exit(1)


def print_summary(summary: RunSummary) -> None:
    table = Table(title="Run summary", show_header=False)
    table.add_row("Status", summary.status.value)
    table.add_row("Runtime", f"{summary.runtime:.1f}s")
    table.add_row("Cycles", str(summary.cycles))
    table.add_row("Chunks submitted", str(summary.submitted))
    table.add_row("Stale chunks", str(summary.stale))
    table.add_row("Filtered chunks", str(summary.filtered))
    for decision, count in sorted(summary.decisions.items(), key=lambda kv: kv[0].value):
        table.add_row(f"Reads {decision.value}", str(count))
    if summary.error is not None:
        table.add_row("Error", f"[red]{summary.error}[/red]")
    err_console.print(table)


ConfigOpt = Annotated[Optional[Path], typer.Option("--config", "-c", help="JSON run configuration")]
PoreModelOpt = Annotated[Optional[Path], typer.Option("--pore-model", "-p", help="Pore model calibration table")]
IndexOpt = Annotated[Optional[Path], typer.Option("--index", "-x", help="Reference index prefix")]
ModeOpt = Annotated[Optional[RunMode], typer.Option("--mode", "-m", help="Eject mapped (deplete) or unmapped (enrich) reads")]
FilterOpt = Annotated[Optional[ChannelFilter], typer.Option("--channels", help="Only act on these channels")]
ChunkTimeOpt = Annotated[Optional[float], typer.Option("--chunk-time", help="Minimum cycle length in seconds")]
DurationOpt = Annotated[Optional[float], typer.Option("--duration", "-d", help="Stop after this many seconds")]
ThreadsOpt = Annotated[Optional[int], typer.Option("--threads", "-t", help="Mapping threads")]
MaxChunksOpt = Annotated[Optional[int], typer.Option("--max-chunks", help="Chunks before an unresolved read counts as unmapped")]
MapperOpt = Annotated[Optional[str], typer.Option("--mapper", help="Registered mapper name")]
ComplementOpt = Annotated[Optional[bool], typer.Option("--complement/--no-complement", help="Use the reverse-complement pore model")]
LogLevelOpt = Annotated[Optional[str], typer.Option("--log-level", help="Log level (default: $PORESELECT_LOG_LEVEL or WARNING)")]


def _common_overrides(
    pore_model, index, mode, channels, chunk_time, duration, threads, max_chunks, mapper, complement,
) -> dict[str, Any]:
    return {
        "mode": mode,
        "channel_filter": channels,
        "chunk_time": chunk_time,
        "duration": duration,
        "mapper": {
            "name": mapper,
            "index": index,
            "pore_model": pore_model,
            "threads": threads,
            "max_chunks": max_chunks,
            "complement": complement,
        },
    }


@app.command()
def simulate(
    signal_table: Annotated[Optional[Path], typer.Argument(help="TSV of read_id, channel, comma-separated signal")] = None,
    config_path: ConfigOpt = None,
    pore_model: PoreModelOpt = None,
    index: IndexOpt = None,
    mode: ModeOpt = None,
    channels: FilterOpt = None,
    chunk_time: ChunkTimeOpt = None,
    chunk_size: Annotated[Optional[int], typer.Option("--chunk-size", help="Signal values per simulated chunk")] = None,
    unblock_delay: Annotated[Optional[float], typer.Option("--unblock-delay", help="Seconds before a new read follows an eject")] = None,
    max_unblocks: Annotated[Optional[int], typer.Option("--max-unblocks", help="Ejects accepted per chunk window")] = None,
    duration: DurationOpt = None,
    threads: ThreadsOpt = None,
    max_chunks: MaxChunksOpt = None,
    mapper: MapperOpt = None,
    complement: ComplementOpt = None,
    log_level: LogLevelOpt = None,
):
    """Run adaptive sampling against a simulated instrument.

    Reads from SIGNAL_TABLE are replayed channel by channel; decisions are
    written to stdout as PAF lines.
    """
    configure_logging(log_level)
    overrides = _common_overrides(
        pore_model, index, mode, channels, chunk_time, duration, threads, max_chunks, mapper, complement,
    )
    overrides["simulator"] = {
        "signal_table": signal_table,
        "chunk_size": chunk_size,
        "chunk_time": chunk_time,
        "unblock_delay": unblock_delay,
        "max_unblocks_per_chunk": max_unblocks,
    }
    config = build_config(config_path, overrides)
    if config.simulator is None:
        fail("A signal table is required for simulation")

    pool = build_mapping(config)
    try:
        client = SimulatedInstrument.from_config(config.simulator)
    except FileNotFoundError as e:
        pool.stop_all()
        fail(str(e))
    run_scheduler(config, client, pool)


@app.command()
def realtime(
    config_path: ConfigOpt = None,
    pore_model: PoreModelOpt = None,
    index: IndexOpt = None,
    mode: ModeOpt = None,
    channels: FilterOpt = None,
    host: Annotated[Optional[str], typer.Option("--host", help="MinKNOW host")] = None,
    port: Annotated[Optional[int], typer.Option("--port", help="MinKNOW port")] = None,
    first_channel: Annotated[Optional[int], typer.Option("--first-channel")] = None,
    last_channel: Annotated[Optional[int], typer.Option("--last-channel")] = None,
    event_detector: Annotated[Optional[str], typer.Option("--event-detector", help="'module:function' turning raw samples into event levels")] = None,
    chunk_time: ChunkTimeOpt = None,
    duration: DurationOpt = None,
    threads: ThreadsOpt = None,
    max_chunks: MaxChunksOpt = None,
    mapper: MapperOpt = None,
    complement: ComplementOpt = None,
    log_level: LogLevelOpt = None,
):
    """Run adaptive sampling on a live instrument through read until."""
    configure_logging(log_level)
    overrides = _common_overrides(
        pore_model, index, mode, channels, chunk_time, duration, threads, max_chunks, mapper, complement,
    )
    overrides["live"] = {
        "host": host,
        "port": port,
        "first_channel": first_channel,
        "last_channel": last_channel,
        "event_detector": event_detector,
    }
    config = build_config(config_path, overrides)

    pool = build_mapping(config)
    try:
        client = LiveInstrument.from_config(config.live)
    except Exception as e:
        pool.stop_all()
        fail(str(e), title="Cannot connect")
    run_scheduler(config, client, pool)


@app.command("check-index")
def check_index(
    index: Annotated[Path, typer.Argument(help="Reference index prefix")],
    mapper: Annotated[str, typer.Option("--mapper", help="Registered mapper name")] = "kmer_seed",
):
    """Check that a reference index has every artifact a mapper needs."""
    mapper_cls = registry.get(mapper)
    if mapper_cls is None:
        fail(f"Unknown mapper '{mapper}'. Available: {', '.join(registry.names())}")

    missing = set(mapper_cls.missing_artifacts(index))
    for suffix in mapper_cls.index_suffixes:
        path = Path(str(index) + suffix)
        mark = "[red]✗ missing[/red]" if path in missing else "[green]✓[/green]"
        console.print(f"  {mark} {path}")
    if missing:
        raise typer.Exit(1)
    console.print(f"[green]Index ready for {mapper}[/green]")


@app.command("model-info")
def model_info(
    path: Annotated[Path, typer.Argument(help="Pore model calibration table")],
    complement: Annotated[bool, typer.Option("--complement", help="Load under reverse-complement k-mers")] = False,
    log_level: LogLevelOpt = None,
):
    """Load a pore model and show its summary statistics."""
    configure_logging(log_level)
    model = load_pore_model(path, complement)
    table = Table(title=str(path), show_header=False)
    table.add_row("Layout", model.schema.value)
    table.add_row("k", str(model.k))
    table.add_row("Modeled k-mers", f"{int(model.modeled.sum())}/{model.kmer_count}")
    table.add_row("Model mean", f"{model.model_mean:.4f}")
    table.add_row("Model stdv", f"{model.model_stdv:.4f}")
    table.add_row("ig_lambda", "-" if model.ig_lambda < 0 else f"{model.ig_lambda:.4f}")
    table.add_row("Complement", str(model.complement))
    console.print(table)


@app.command()
def stats(
    paf: Annotated[Path, typer.Argument(help="PAF output from simulate or realtime ('-' for stdin)")],
):
    """Summarize decisions from a run's PAF output."""
    if str(paf) == "-":
        lines = sys.stdin.readlines()
    elif not paf.exists():
        fail(f"File not found: {paf}")
    else:
        lines = paf.read_text().splitlines()

    decisions: Counter = Counter()
    mapped = 0
    total = 0
    diagnostics = 0
    times: dict[str, list[float]] = {}
    for lineno, line in enumerate(lines, start=1):
        if line.startswith("#"):
            diagnostics += 1
            continue
        try:
            record = parse_paf_line(line)
        except ValueError as e:
            logger.warning("line %d: %s", lineno, e)
            continue
        if record is None:
            continue
        total += 1
        mapped += record.mapped
        decision = record.decision.value if record.decision else "none"
        decisions[decision] += 1
        if record.decision_ms is not None:
            times.setdefault(decision, []).append(record.decision_ms)

    table = Table(title="Decisions")
    table.add_column("Decision")
    table.add_column("Reads", justify="right")
    table.add_column("Median ms", justify="right")
    for decision, count in sorted(decisions.items()):
        values = times.get(decision)
        median = f"{statistics.median(values):.1f}" if values else "-"
        table.add_row(decision, str(count), median)
    console.print(table)
    console.print(f"{total} reads, {mapped} mapped, {diagnostics} diagnostics")


@app.command()
def mappers():
    """List registered mappers."""
    table = Table(title="Mappers")
    for column in ("name", "description", "version", "index"):
        table.add_column(column)
    for info in registry.info():
        table.add_row(info["name"], info["description"], info["version"], info["index"])
    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"poreselect v{__version__}")
    console.print("Real-time adaptive sampling for nanopore sequencers")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
