# Copyright (c) Syntropy Systems
"""Harness-wide configuration defaults for flagsweep."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

CONFIG_DIR_NAME = ".flagsweep"
CONFIG_FILE_NAME = "config.yaml"


@dataclass
class HarnessConfig:
    """Defaults applied to every sweep unless the sweep file overrides them."""

    # Wall-clock bound for a single run (seconds)
    timeout: float = 300.0

    # Interval between words/sec reports while a process runs (seconds)
    report_interval: float = 10.0

    # Run grid points in shuffled order
    randomize: bool = True

    # CSV file that receives one row per run
    results_file: str = "results.csv"

    # Print each successful result as soon as it is recorded
    report_each_success: bool = True


def resolve_config_path(start_path: Path | None = None) -> Path | None:
    """Return the config.yaml that governs start_path (default: cwd).

    The nearest ancestor holding a .flagsweep directory owns the project, even
    when that directory has no config.yaml yet; ~/.flagsweep is the fallback.
    """
    start = (start_path or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        if (directory / CONFIG_DIR_NAME).is_dir():
            return directory / CONFIG_DIR_NAME / CONFIG_FILE_NAME

    home_config = Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    return home_config if home_config.exists() else None


def load_config(config_dir: Path | None = None) -> HarnessConfig:
    """Load configuration from .flagsweep/config.yaml or defaults.

    Looks for config in:
    1. Provided config_dir
    2. Nearest .flagsweep directory walking up
    3. ~/.flagsweep/config.yaml
    4. Defaults
    """
    config = HarnessConfig()

    if config_dir is not None:
        config_path: Path | None = config_dir / CONFIG_FILE_NAME
    else:
        config_path = resolve_config_path()

    if config_path is not None and config_path.exists():
        with config_path.open() as f:
            data = cast("dict[str, object]", yaml.safe_load(f) or {})

        timeout = data.get("timeout")
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool):
            config.timeout = float(timeout)
        report_interval = data.get("report_interval")
        if isinstance(report_interval, (int, float)) and not isinstance(
            report_interval, bool
        ):
            config.report_interval = float(report_interval)
        randomize = data.get("randomize")
        if isinstance(randomize, bool):
            config.randomize = randomize
        results_file = data.get("results_file")
        if isinstance(results_file, str):
            config.results_file = results_file
        report_each_success = data.get("report_each_success")
        if isinstance(report_each_success, bool):
            config.report_each_success = report_each_success

    return config


def default_config_data() -> dict[str, object]:
    """Return the defaults as a plain mapping, as written by ``flagsweep init``."""
    config = HarnessConfig()
    return {
        "timeout": config.timeout,
        "report_interval": config.report_interval,
        "randomize": config.randomize,
        "results_file": config.results_file,
        "report_each_success": config.report_each_success,
    }
