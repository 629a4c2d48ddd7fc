# Copyright (c) Syntropy Systems
"""Data models for flagsweep."""

from .base import ParameterAssignment, ParameterGrid, ParamValue
from .result import ExecutionOutcome, RunMetrics, RunResult, SweepSummary

__all__ = [
    "ExecutionOutcome",
    "ParamValue",
    "ParameterAssignment",
    "ParameterGrid",
    "RunMetrics",
    "RunResult",
    "SweepSummary",
]
