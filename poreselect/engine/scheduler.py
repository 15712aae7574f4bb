"""Real-time scheduling loop.

One thread runs a cooperative loop, each cycle:

1. drain ready mapping results, decide, command the instrument, emit records;
2. fetch new chunks, dropping stale and filtered ones;
3. hand accepted chunks to the mapping subsystem;
4. sleep for whatever is left of ``chunk_time``.

Faults inside a cycle are returned as a ``FAULTED`` outcome instead of
propagating; ``run()`` always finishes with ``shutdown()``.
"""

from __future__ import annotations

import logging
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, TextIO

from poreselect.config import RealtimeConfig
from poreselect.engine.decision import ChannelDecider
from poreselect.engine.models import Channel, Decision
from poreselect.engine.paf import format_diagnostic, format_paf
from poreselect.instrument.base import InstrumentClient
from poreselect.mapping.base import MappingSubsystem

logger = logging.getLogger(__name__)


class CycleStatus(str, Enum):
    CONTINUE = "continue"
    FINISHED = "finished"
    FAULTED = "faulted"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAULTED = "faulted"
    FAILED_TO_START = "failed_to_start"


@dataclass
class CycleOutcome:
    """What one scheduling cycle did."""

    status: CycleStatus = CycleStatus.CONTINUE
    results: int = 0
    submitted: int = 0
    stale: int = 0
    filtered: int = 0
    elapsed: float = 0.0
    slept: float = 0.0
    error: Exception | None = None


@dataclass
class RunSummary:
    """Totals for a whole run."""

    status: RunStatus = RunStatus.COMPLETED
    cycles: int = 0
    submitted: int = 0
    stale: int = 0
    filtered: int = 0
    decisions: Counter = field(default_factory=Counter)
    runtime: float = 0.0
    error: BaseException | None = None

    def add(self, outcome: CycleOutcome) -> None:
        self.cycles += 1
        self.submitted += outcome.submitted
        self.stale += outcome.stale
        self.filtered += outcome.filtered


class RealtimeScheduler:
    """Owns the channel table, instrument client and mapping subsystem for one run."""

    def __init__(
        self,
        config: RealtimeConfig,
        client: InstrumentClient,
        mapper: MappingSubsystem,
        out: TextIO | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.client = client
        self.mapper = mapper
        self.decider = ChannelDecider(config.mode, config.channel_filter)
        self.channels: dict[int, Channel] = {}
        self.decisions: Counter = Counter()
        self._out = out or sys.stdout
        self._clock = clock
        self._sleep = sleep
        self._accepting = True
        self._shut_down = False

    def channel(self, number: int) -> Channel:
        state = self.channels.get(number)
        if state is None:
            state = self.channels[number] = Channel(number)
        return state

    def _write(self, line: str) -> None:
        self._out.write(line + "\n")

    def run(self) -> RunSummary:
        """Run until the instrument stops, the duration elapses, a fault or an interrupt."""
        summary = RunSummary()
        try:
            if not self.client.run():
                logger.error("Instrument did not start; nothing to do")
                summary.status = RunStatus.FAILED_TO_START
                return summary

            logger.info(
                "Real-time loop started (mode=%s, filter=%s, chunk_time=%.3fs)",
                self.config.mode.value, self.config.channel_filter.value, self.config.chunk_time,
            )
            while True:
                outcome = self.run_cycle()
                summary.add(outcome)
                if outcome.status == CycleStatus.FAULTED:
                    summary.status = RunStatus.FAULTED
                    summary.error = outcome.error
                    break
                if outcome.status == CycleStatus.FINISHED:
                    break
        except KeyboardInterrupt:
            logger.warning("Interrupted; shutting down")
            summary.status = RunStatus.INTERRUPTED
        except Exception as exc:
            logger.exception("Run failed")
            summary.status = RunStatus.FAULTED
            summary.error = exc
        finally:
            self.shutdown()
            summary.decisions = Counter(self.decisions)
            summary.runtime = self.client.get_runtime()
        return summary

    def run_cycle(self) -> CycleOutcome:
        """Run one cycle, sleeping out the rest of ``chunk_time`` if it continues."""
        t0 = self._clock()
        outcome = CycleOutcome()
        try:
            self._drain(outcome)
            if self._finished():
                outcome.status = CycleStatus.FINISHED
            else:
                self._fetch(outcome)
        except Exception as exc:
            logger.exception("Scheduling cycle failed")
            outcome.status = CycleStatus.FAULTED
            outcome.error = exc
        finally:
            self._out.flush()

        outcome.elapsed = self._clock() - t0
        if outcome.status == CycleStatus.CONTINUE and outcome.elapsed < self.config.chunk_time:
            outcome.slept = self.config.chunk_time - outcome.elapsed
            self._sleep(outcome.slept)
        elif outcome.elapsed > self.config.chunk_time:
            logger.debug("Cycle overran chunk time: %.4fs", outcome.elapsed)
        return outcome

    def _finished(self) -> bool:
        if not self.client.is_running:
            logger.info("Instrument stopped streaming")
            return True
        duration = self.config.duration
        if duration is not None and self.client.get_runtime() >= duration:
            logger.info("Run duration of %.1fs reached", duration)
            return True
        return False

    def _drain(self, outcome: CycleOutcome) -> None:
        for number, read_id, result in self.mapper.poll():
            channel = self.channel(number)
            decision = self.decider.decide(result, self.client.should_eject)

            result.decision = decision
            result.decision_elapsed = channel.resolve(read_id, decision, self._clock())
            if decision == Decision.EJECT:
                result.unblock_delay = self.client.unblock_read(number, read_id)
            else:
                self.client.stop_receiving_read(number, read_id)

            self._write(format_paf(result))
            self.decisions[decision] += 1
            outcome.results += 1

    def _fetch(self, outcome: CycleOutcome) -> None:
        if not self._accepting:
            return
        chunks = self.client.get_read_chunks(self.config.batch_size)
        now = self._clock()
        for number, chunk in chunks:
            if not self.config.channel_filter.includes(number):
                self._write(format_diagnostic(
                    f"skipping chunk {chunk.chunk_number} of {chunk.read_id}: "
                    f"channel {number} is excluded"
                ))
                outcome.filtered += 1
                continue

            channel = self.channel(number)
            if chunk.read_id == channel.last_unblocked:
                self._write(format_diagnostic(
                    f"received chunk {chunk.chunk_number} of {chunk.read_id} after unblocking"
                ))
                outcome.stale += 1
                continue

            channel.track(chunk.read_id, now)
            self.mapper.submit(chunk)
            outcome.submitted += 1

    def _report_unfinished(self) -> None:
        # the instrument takes no more commands; every late result is ended
        for number, read_id, result in self.mapper.poll():
            result.decision = Decision.ENDED
            result.decision_elapsed = self.channel(number).resolve(read_id, Decision.ENDED, self._clock())
            self._write(format_paf(result))
            self.decisions[Decision.ENDED] += 1

    def shutdown(self) -> None:
        """Stop taking chunks and stop mapping, then record reads left open as ended.

        A live instrument is reset last. Safe to call twice.
        """
        if self._shut_down:
            return
        self._shut_down = True
        self._accepting = False

        try:
            self.mapper.stop_all()
        except Exception:
            logger.exception("Failed to stop mapping subsystem")

        try:
            self._report_unfinished()
        except Exception:
            logger.exception("Failed to report reads left at shutdown")
        finally:
            self._out.flush()

        if self.client.is_live:
            try:
                self.client.reset()
            except Exception:
                logger.exception("Failed to reset instrument")
        logger.info("Shutdown complete")
