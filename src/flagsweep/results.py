# Copyright (c) Syntropy Systems
"""Append-only CSV result stream."""
from __future__ import annotations

import csv
import logging
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from flagsweep.models.base import ParameterAssignment
from flagsweep.models.result import ExecutionOutcome, RunMetrics, RunResult

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

FIELDNAMES = [
    "finished_at",
    "outcome",
    "duration_seconds",
    "words_per_second",
    "tokens_per_second",
    "params",
]
_ASSIGNMENT_ADAPTER = TypeAdapter(ParameterAssignment)


def result_to_row(result: RunResult) -> dict[str, str]:
    """Flatten a result into one CSV row."""
    return {
        "finished_at": result.finished_at,
        "outcome": result.outcome.value,
        "duration_seconds": f"{result.duration_seconds:.3f}",
        "words_per_second": repr(result.metrics.words_per_second),
        "tokens_per_second": repr(result.metrics.tokens_per_second),
        "params": _ASSIGNMENT_ADAPTER.dump_json(result.assignment).decode("utf-8"),
    }


def row_to_result(row: dict[str, str]) -> RunResult:
    """Parse one CSV row back into a result."""
    try:
        return RunResult(
            assignment=_ASSIGNMENT_ADAPTER.validate_json(row["params"] or "{}"),
            outcome=ExecutionOutcome(row["outcome"]),
            duration_seconds=float(row["duration_seconds"]),
            metrics=RunMetrics(
                words_per_second=float(row["words_per_second"]),
                tokens_per_second=float(row["tokens_per_second"]),
            ),
            finished_at=row["finished_at"],
        )
    except (KeyError, TypeError, ValidationError) as e:
        msg = f"Malformed result row: {e}"
        raise ValueError(msg) from e


class CsvResultSink:
    """Appends one row per run to a CSV file, writing the header once."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def write(self, result: RunResult) -> None:
        """Append a result. Each call opens and closes the file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not self.path.exists() or self.path.stat().st_size == 0
        with self.path.open("a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
            if write_header:
                writer.writeheader()
            writer.writerow(result_to_row(result))
        logger.debug("Recorded %s result in %s", result.outcome.value, self.path)


def read_results(path: Path) -> list[RunResult]:
    """Read every result from a CSV file written by CsvResultSink."""
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = set(FIELDNAMES) - set(reader.fieldnames or [])
        if missing:
            msg = f"{path} is missing columns: {', '.join(sorted(missing))}"
            raise ValueError(msg)
        return [row_to_result(row) for row in reader]
