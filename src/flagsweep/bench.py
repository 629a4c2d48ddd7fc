# Copyright (c) Syntropy Systems
"""Run orchestration: one monitored process per grid point."""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Protocol

from flagsweep.models.result import RunResult, SweepSummary
from flagsweep.runner import MonitorSink, NullSink, ProcessMonitor
from flagsweep.sweep import plan_sweep

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from flagsweep.models.result import ExecutionOutcome, RunMetrics
    from flagsweep.sweep import SweepConfig

logger = logging.getLogger(__name__)


class RunExecutor(Protocol):
    """Anything that can run one command the way ProcessMonitor does."""

    def execute(
        self,
        command: Sequence[str],
        timeout: float = ...,
        report_interval: float = ...,
    ) -> tuple[ExecutionOutcome, RunMetrics]: ...


class ResultSink(Protocol):
    """Persists one result per run, in run order."""

    def write(self, result: RunResult) -> None: ...


class SweepReporter(MonitorSink, Protocol):
    """Observes a whole sweep as well as each monitored run."""

    def on_sweep_start(self, total: int, grid_size: int) -> None: ...

    def on_result(self, result: RunResult, position: int, total: int) -> None: ...

    def on_success(self, result: RunResult) -> None: ...

    def on_summary(self, summary: SweepSummary) -> None: ...


class NullReporter(NullSink):
    """Reporter that discards everything."""

    def on_sweep_start(self, total: int, grid_size: int) -> None:
        pass

    def on_result(self, result: RunResult, position: int, total: int) -> None:
        pass

    def on_success(self, result: RunResult) -> None:
        pass

    def on_summary(self, summary: SweepSummary) -> None:
        pass


class MemorySink:
    """Keeps results in a list."""

    def __init__(self) -> None:
        self.results: list[RunResult] = []

    def write(self, result: RunResult) -> None:
        self.results.append(result)


def summarize(results: Iterable[RunResult]) -> SweepSummary:
    """Count successes and pick the best wps / tps among successful runs."""
    all_results = list(results)
    successful = [r for r in all_results if r.succeeded]
    if not successful:
        return SweepSummary(total=len(all_results), successes=0)

    return SweepSummary(
        total=len(all_results),
        successes=len(successful),
        best_wps=max(successful, key=lambda r: r.metrics.words_per_second),
        best_tps=max(successful, key=lambda r: r.metrics.tokens_per_second),
    )


def run_sweep(
    sweep: SweepConfig,
    sink: ResultSink | None = None,
    reporter: SweepReporter | None = None,
    monitor: RunExecutor | None = None,
    clock: Callable[[], float] = time.perf_counter,
) -> list[RunResult]:
    """Run every planned grid point sequentially.

    A TIMEOUT or FAILURE never stops the sweep; every grid point produces
    exactly one result, forwarded to ``sink`` as soon as it exists.
    """
    if sink is None:
        sink = MemorySink()
    if reporter is None:
        reporter = NullReporter()
    if monitor is None:
        monitor = ProcessMonitor(sink=reporter, tps_pattern=sweep.tps_pattern)

    planned = plan_sweep(sweep)
    reporter.on_sweep_start(len(planned), sweep.grid_size)

    results: list[RunResult] = []
    for position, run in enumerate(planned, start=1):
        logger.debug("Run %d/%d: %s", position, len(planned), run.assignment)
        started = clock()
        outcome, metrics = monitor.execute(
            run.command,
            timeout=sweep.timeout,
            report_interval=sweep.report_interval,
        )
        duration = max(0.0, clock() - started)

        result = RunResult(
            assignment=dict(run.assignment),
            outcome=outcome,
            duration_seconds=duration,
            metrics=metrics,
        )
        sink.write(result)
        results.append(result)

        reporter.on_result(result, position, len(planned))
        if result.succeeded and sweep.report_each_success:
            reporter.on_success(result)

    reporter.on_summary(summarize(results))
    return results
