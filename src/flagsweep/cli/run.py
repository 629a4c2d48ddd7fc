# Copyright (c) Syntropy Systems
"""flagsweep run command."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from flagsweep.bench import run_sweep
from flagsweep.config import load_config
from flagsweep.console import ConsoleReporter
from flagsweep.results import CsvResultSink
from flagsweep.sweep import SweepConfig, plan_sweep

console = Console()


def run(
    sweep_file: Path = typer.Argument(
        ...,
        help="Path to sweep configuration YAML file",
        exists=True,
        dir_okay=False,
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run", "-n",
        help="Preview the planned runs without executing them",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout", "-t",
        envvar="FLAGSWEEP_TIMEOUT",
        help="Seconds before a run is killed",
    ),
    report_interval: Optional[float] = typer.Option(
        None,
        "--report-interval", "-i",
        envvar="FLAGSWEEP_REPORT_INTERVAL",
        help="Seconds between words/sec reports",
    ),
    shuffle: Optional[bool] = typer.Option(
        None,
        "--shuffle/--no-shuffle",
        help="Run grid points in random order",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Seed for the shuffled order",
    ),
    max_runs: Optional[int] = typer.Option(
        None,
        "--max-runs", "-m",
        help="Only run the first N planned grid points",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        envvar="FLAGSWEEP_RESULTS",
        help="CSV file to append results to",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Do not echo process output",
    ),
) -> None:
    r"""Run a benchmark sweep over every parameter combination.

    Example sweep.yaml:

    \b
        name: llama-flags
        command: [llama-cli, -m, model.gguf, -n, "128", -no-cnv]
        timeout: 300
        parameters:
          -ngl: [24, 28, 32]
          --threads: [4, 8]
          --flash-attn: [true, false]
    """
    try:
        sweep_config = SweepConfig.from_yaml(sweep_file, load_config()).with_overrides(
            timeout=timeout,
            report_interval=report_interval,
            randomize=shuffle,
            seed=seed,
            max_runs=max_runs,
            results_file=str(output) if output is not None else None,
        )
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from e

    reporter = ConsoleReporter(console, echo_output=not quiet)
    planned = plan_sweep(sweep_config)

    if not planned:
        console.print("[yellow]No runs generated from sweep config[/yellow]")
        return

    if dry_run:
        reporter.show_plan(planned, f"Sweep: {sweep_config.name or sweep_file.stem}")
        console.print(f"\n[bold]{len(planned)} runs[/bold] planned")
        console.print("\n[yellow]Dry run - nothing executed[/yellow]")
        return

    results_path = Path(sweep_config.results_file)
    _ = run_sweep(
        sweep_config,
        sink=CsvResultSink(results_path),
        reporter=reporter,
    )
    console.print(f"\n[dim]Results:[/dim] {results_path}")
