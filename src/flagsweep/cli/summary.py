# Copyright (c) Syntropy Systems
"""Summary command - best runs from a results file."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from flagsweep.bench import summarize
from flagsweep.console import ConsoleReporter
from flagsweep.results import read_results

console = Console()


def summary(
    results_file: Path = typer.Argument(
        ...,
        help="CSV results file written by 'flagsweep run'",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """Show success count and the best words/sec and tokens/sec runs.

    Example:
        flagsweep summary results.csv

    """
    try:
        results = read_results(results_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error reading results:[/red] {e}")
        raise typer.Exit(1) from e

    if not results:
        console.print("[yellow]No results recorded[/yellow]")
        return

    ConsoleReporter(console).on_summary(summarize(results))
