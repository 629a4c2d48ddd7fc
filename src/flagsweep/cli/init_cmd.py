# Copyright (c) Syntropy Systems
"""flagsweep init command."""

from pathlib import Path

import typer
import yaml
from rich.console import Console

from flagsweep.config import CONFIG_DIR_NAME, CONFIG_FILE_NAME, default_config_data

console = Console()

EXAMPLE_SWEEP = {
    "name": "llama-flags",
    "command": [
        "llama-cli",
        "-m",
        "models/model.gguf",
        "--color",
        "-p",
        "The top 10 words when you think of LLM coding. Just the words, one per line.",
        "--temp",
        "0",
        "-n",
        "128",
        "-no-cnv",
    ],
    "parameters": {
        "-ngl": [24, 28, 32],
        "--ubatch-size": [256, 512, 1024, 2048],
        "--batch-size": [256, 512, 1024, 2048, 4096],
        "--threads": [2, 4, 8],
        "--flash-attn": [True, False],
    },
}


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a flagsweep project.

    Creates a .flagsweep directory with default settings and an example
    sweep.yaml.
    """
    target = path.resolve()
    config_dir = target / CONFIG_DIR_NAME

    if config_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {config_dir}")
        return

    config_dir.mkdir(parents=True)

    config_path = config_dir / CONFIG_FILE_NAME
    with config_path.open("w") as f:
        yaml.dump(default_config_data(), f, default_flow_style=False)

    sweep_path = target / "sweep.yaml"
    if not sweep_path.exists():
        with sweep_path.open("w") as f:
            yaml.dump(EXAMPLE_SWEEP, f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Initialized flagsweep project:[/green] {config_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]example sweep:[/dim] {sweep_path}")
