# Copyright (c) Syntropy Systems
"""Console reporting for monitored runs and sweeps."""
from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Sequence

    from flagsweep.models.result import RunResult, SweepSummary
    from flagsweep.sweep import PlannedRun


def format_params(assignment: dict[str, object]) -> str:
    """Render an assignment as ``flag=value`` pairs."""
    if not assignment:
        return "-"
    return ", ".join(f"{k}={v}" for k, v in assignment.items())


class ConsoleReporter:
    """Prints process output, periodic metrics and sweep summaries."""

    def __init__(self, console: Console | None = None, echo_output: bool = True) -> None:
        self.console = console or Console()
        self.echo_output = echo_output

    # Monitor events

    def on_start(self, command: Sequence[str], timeout: float) -> None:
        self.console.print(
            f"[blue]Executing:[/blue] {' '.join(command)} "
            f"[dim](timeout {timeout:g}s)[/dim]",
            highlight=False,
        )
        self.console.rule(style="dim")

    def on_output(self, line: str) -> None:
        if self.echo_output:
            self.console.print(Text.from_ansi(line))

    def on_metric(self, words_per_second: float, total_words: int, elapsed: float) -> None:
        self.console.print(
            f"[cyan][METRIC][/cyan] Words/sec: {words_per_second:.2f} "
            f"| Total words: {total_words} | Elapsed: {int(elapsed)}s",
            highlight=False,
        )

    def on_cleanup(self, pid: int) -> None:
        self.console.print(f"[yellow]Killing process {pid}...[/yellow]")

    def on_error(self, error: BaseException) -> None:
        self.console.print(f"[red]Error:[/red] {error}", highlight=False)

    # Sweep events

    def on_sweep_start(self, total: int, grid_size: int) -> None:
        self.console.print(
            f"\n[bold]Starting benchmark of {total} parameter combinations[/bold]"
            + (f" [dim](of {grid_size})[/dim]" if total != grid_size else "")
        )

    def on_result(self, result: RunResult, position: int, total: int) -> None:
        style = {"SUCCESS": "green", "TIMEOUT": "yellow"}.get(result.outcome.value, "red")
        self.console.print(
            f"[{style}]Run {position}/{total} {result.outcome.value}[/{style}] "
            f"in {result.duration_seconds:.1f}s "
            f"| wps {result.metrics.words_per_second:.2f} "
            f"| tps {result.metrics.tokens_per_second:.2f}",
            highlight=False,
        )

    def on_success(self, result: RunResult) -> None:
        self.console.print(f"  [dim]params:[/dim] {format_params(dict(result.assignment))}")

    def on_summary(self, summary: SweepSummary) -> None:
        self.console.print(
            f"\nThere were [bold]{summary.successes}[/bold] successful runs "
            f"out of {summary.total} attempts"
        )
        if summary.best_wps is None or summary.best_tps is None:
            self.console.print("[yellow]No successful runs[/yellow]")
            self.console.print("Max WPS: n/a")
            self.console.print("Max TPS: n/a")
            return

        table = Table(title="Best runs", show_header=True, header_style="bold")
        table.add_column("Metric", style="dim")
        table.add_column("Value", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Parameters")
        table.add_row(
            "Max WPS",
            f"{summary.best_wps.metrics.words_per_second:.2f}",
            f"{summary.best_wps.duration_seconds:.1f}s",
            format_params(dict(summary.best_wps.assignment)),
        )
        table.add_row(
            "Max TPS",
            f"{summary.best_tps.metrics.tokens_per_second:.2f}",
            f"{summary.best_tps.duration_seconds:.1f}s",
            format_params(dict(summary.best_tps.assignment)),
        )
        self.console.print(table)

    def show_plan(self, runs: Sequence[PlannedRun], title: str) -> None:
        table = Table(title=title)
        table.add_column("#", style="dim")
        table.add_column("Command")
        table.add_column("Parameters")

        for run in runs:
            cmd_str = " ".join(run.command)
            if len(cmd_str) > 60:
                cmd_str = "..." + cmd_str[-57:]
            table.add_row(str(run.index), cmd_str, format_params(dict(run.assignment)))

        self.console.print(table)
