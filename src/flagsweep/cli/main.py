# Copyright (c) Syntropy Systems
"""Main CLI entry point for flagsweep."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from flagsweep.cli.exec_cmd import exec_command
from flagsweep.cli.init_cmd import init
from flagsweep.cli.run import run
from flagsweep.cli.summary import summary

app = typer.Typer(
    name="flagsweep",
    help=(
        "Benchmark an executable across every combination of its flags. "
        "Bound each run, measure its throughput, keep the results."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug logging",
    ),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# Register commands
_ = app.command()(init)
_ = app.command()(run)
_ = app.command(
    name="exec",
    context_settings={"allow_extra_args": True, "allow_interspersed_args": False},
)(exec_command)
_ = app.command()(summary)


if __name__ == "__main__":
    app()
