# Copyright (c) Syntropy Systems
"""Pydantic models for run outcomes and metrics."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import Field

from .base import FlagsweepBaseModel, FrozenModel, ParameterAssignment


class ExecutionOutcome(str, Enum):
    """Terminal classification of one monitored process run."""

    SUCCESS = "SUCCESS"
    TIMEOUT = "TIMEOUT"
    FAILURE = "FAILURE"


class RunMetrics(FrozenModel):
    """Throughput observed while a process was running."""

    words_per_second: float = Field(default=0.0, ge=0.0)
    tokens_per_second: float = Field(default=0.0, ge=0.0)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunResult(FrozenModel):
    """Result of one grid point, written once to the result stream."""

    assignment: ParameterAssignment = Field(default_factory=dict)
    outcome: ExecutionOutcome
    duration_seconds: float = Field(ge=0.0)
    metrics: RunMetrics = Field(default_factory=RunMetrics)
    finished_at: str = Field(default_factory=_utc_now)

    @property
    def succeeded(self) -> bool:
        """Whether the process ran to completion inside its timeout."""
        return self.outcome is ExecutionOutcome.SUCCESS


class SweepSummary(FlagsweepBaseModel):
    """Aggregate statistics over a sweep.

    The ``best_*`` fields only consider successful runs and are None
    when no run succeeded.
    """

    total: int = 0
    successes: int = 0
    best_wps: RunResult | None = None
    best_tps: RunResult | None = None
