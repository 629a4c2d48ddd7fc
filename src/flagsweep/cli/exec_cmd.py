# Copyright (c) Syntropy Systems
"""flagsweep exec command."""
from __future__ import annotations

import time

import typer
from rich.console import Console

from flagsweep.config import load_config
from flagsweep.console import ConsoleReporter
from flagsweep.models.result import ExecutionOutcome
from flagsweep.runner import DEFAULT_TPS_PATTERN, ProcessMonitor

console = Console()


def exec_command(
    ctx: typer.Context,
    timeout: float | None = typer.Option(
        None,
        "--timeout", "-t",
        envvar="FLAGSWEEP_TIMEOUT",
        help="Seconds before the process is killed",
    ),
    report_interval: float | None = typer.Option(
        None,
        "--report-interval", "-i",
        envvar="FLAGSWEEP_REPORT_INTERVAL",
        help="Seconds between words/sec reports",
    ),
    tps_pattern: str = typer.Option(
        DEFAULT_TPS_PATTERN,
        "--tps-pattern",
        help="Regex with a named 'tps' group for tokens/sec lines",
    ),
) -> None:
    """Run a single command under the monitor and print its metrics.

    Use -- to separate flagsweep options from the command:

        flagsweep exec --timeout 60 -- llama-cli -m model.gguf -n 128
    """
    command_argv = list(ctx.args)

    if not command_argv:
        console.print("[red]Error:[/red] No command provided")
        console.print("\nUsage: flagsweep exec [OPTIONS] -- COMMAND...")
        raise typer.Exit(1)

    defaults = load_config()
    try:
        monitor = ProcessMonitor(sink=ConsoleReporter(console), tps_pattern=tps_pattern)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    started = time.perf_counter()
    try:
        outcome, metrics = monitor.execute(
            command_argv,
            timeout=timeout if timeout is not None else defaults.timeout,
            report_interval=(
                report_interval if report_interval is not None else defaults.report_interval
            ),
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    elapsed = time.perf_counter() - started

    style = "green" if outcome is ExecutionOutcome.SUCCESS else "red"
    console.print(
        f"\n[{style}]{outcome.value}[/{style}] in {elapsed:.1f}s "
        f"| wps {metrics.words_per_second:.2f} "
        f"| tps {metrics.tokens_per_second:.2f}",
        highlight=False,
    )
    if outcome is not ExecutionOutcome.SUCCESS:
        raise typer.Exit(1)
