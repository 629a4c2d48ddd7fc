# Copyright (c) Syntropy Systems
"""Pytest fixtures for flagsweep tests."""

import os
import sys
import tempfile
from collections.abc import Generator, Sequence
from pathlib import Path

import pytest
import yaml

# Store original cwd at module load time
_original_cwd = Path.cwd()


class RecordingSink:
    """Monitor sink that keeps every event for assertions."""

    def __init__(self) -> None:
        self.starts: list[tuple[list[str], float]] = []
        self.lines: list[str] = []
        self.metrics: list[tuple[float, int, float]] = []
        self.cleanups: list[int] = []
        self.errors: list[BaseException] = []

    def on_start(self, command: Sequence[str], timeout: float) -> None:
        self.starts.append((list(command), timeout))

    def on_output(self, line: str) -> None:
        self.lines.append(line)

    def on_metric(self, words_per_second: float, total_words: int, elapsed: float) -> None:
        self.metrics.append((words_per_second, total_words, elapsed))

    def on_cleanup(self, pid: int) -> None:
        self.cleanups.append(pid)

    def on_error(self, error: BaseException) -> None:
        self.errors.append(error)


def python_command(script: str) -> list[str]:
    """Unbuffered Python child running ``script``."""
    return [sys.executable, "-u", "-c", script]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sink() -> RecordingSink:
    """Fresh recording sink."""
    return RecordingSink()


@pytest.fixture
def flagsweep_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary project with deterministic harness defaults."""
    config_dir = temp_dir / ".flagsweep"
    config_dir.mkdir()
    _ = (config_dir / "config.yaml").write_text(
        yaml.dump(
            {
                "timeout": 10,
                "report_interval": 0.2,
                "randomize": False,
                "results_file": "results.csv",
                "report_each_success": True,
            }
        )
    )

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)
