# Copyright (c) Syntropy Systems
"""Sweep configuration, grid expansion and command building."""
from __future__ import annotations

import dataclasses
import itertools
import random
import shlex
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, cast

import yaml

from flagsweep.config import HarnessConfig
from flagsweep.runner import DEFAULT_TPS_PATTERN, compile_tps_pattern

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping, Sequence
    from pathlib import Path

    from flagsweep.models.base import ParameterAssignment, ParameterGrid, ParamValue

SCALAR_TYPES = (bool, int, float, str)


@dataclass(frozen=True)
class SweepConfig:
    """Configuration for a benchmark sweep."""

    command: list[str]
    parameters: ParameterGrid = field(default_factory=dict)
    name: str | None = None
    timeout: float = 300.0
    report_interval: float = 10.0
    randomize: bool = True
    seed: int | None = None
    max_runs: int | None = None
    results_file: str = "results.csv"
    report_each_success: bool = True
    tps_pattern: str = DEFAULT_TPS_PATTERN

    def __post_init__(self) -> None:
        if not self.command:
            msg = "Sweep config 'command' must not be empty"
            raise ValueError(msg)
        if self.timeout <= 0:
            msg = f"timeout must be positive, got {self.timeout}"
            raise ValueError(msg)
        if self.report_interval <= 0:
            msg = f"report_interval must be positive, got {self.report_interval}"
            raise ValueError(msg)
        if self.max_runs is not None and self.max_runs < 0:
            msg = f"max_runs must not be negative, got {self.max_runs}"
            raise ValueError(msg)
        _ = compile_tps_pattern(self.tps_pattern)

    @classmethod
    def from_yaml(cls, path: Path, defaults: HarnessConfig | None = None) -> SweepConfig:
        """Load sweep configuration from YAML file.

        Values missing from the file fall back to ``defaults``.
        """
        with path.open() as f:
            data = cast("dict[str, object] | None", yaml.safe_load(f))

        if not isinstance(data, dict):
            msg = "Sweep config must be a mapping"
            raise ValueError(msg)
        return cls.from_dict(data, defaults)

    @classmethod
    def from_dict(
        cls, data: Mapping[str, object], defaults: HarnessConfig | None = None
    ) -> SweepConfig:
        """Build a sweep configuration from already-parsed data."""
        if defaults is None:
            defaults = HarnessConfig()

        if "command" not in data:
            msg = "Sweep config must have 'command' field"
            raise ValueError(msg)

        return cls(
            command=parse_command(data["command"]),
            parameters=parse_parameters(data.get("parameters") or {}),
            name=cast("Optional[str]", data.get("name")),
            timeout=_number(data, "timeout", defaults.timeout),
            report_interval=_number(data, "report_interval", defaults.report_interval),
            randomize=_flag(data, "randomize", defaults.randomize),
            seed=_optional_int(data, "seed"),
            max_runs=_optional_int(data, "max_runs"),
            results_file=str(data.get("results", defaults.results_file)),
            report_each_success=_flag(
                data, "report_each_success", defaults.report_each_success
            ),
            tps_pattern=str(data.get("tps_pattern", DEFAULT_TPS_PATTERN)),
        )

    def with_overrides(self, **changes: object) -> SweepConfig:
        """Return a copy with every non-None keyword applied."""
        applied = {key: value for key, value in changes.items() if value is not None}
        return dataclasses.replace(self, **applied)  # type: ignore[arg-type]

    @property
    def grid_size(self) -> int:
        """Number of combinations in the full grid."""
        size = 1
        for values in self.parameters.values():
            size *= len(values)
        return size


@dataclass(frozen=True)
class PlannedRun:
    """A single grid point with the command that will run it."""

    index: int
    assignment: ParameterAssignment
    command: list[str]


def parse_command(raw: object) -> list[str]:
    """Accept a command as an argv list or a shell-style string."""
    if isinstance(raw, str):
        return shlex.split(raw)
    if isinstance(raw, list) and all(isinstance(part, (str, int, float)) for part in raw):
        return [str(part) for part in raw]
    msg = "Sweep config 'command' must be a string or a list of strings"
    raise ValueError(msg)


def parse_parameters(raw: object) -> ParameterGrid:
    """Validate a parameter grid.

    Each flag maps to a list of scalar candidates, either directly or
    under a 'values' key.
    """
    if not isinstance(raw, dict):
        msg = "Sweep config 'parameters' must be a mapping"
        raise ValueError(msg)

    grid: ParameterGrid = {}
    for name, spec in cast("dict[object, object]", raw).items():
        if isinstance(spec, dict):
            if "values" not in spec:
                msg = f"Parameter '{name}' must have 'values'"
                raise ValueError(msg)
            spec = cast("dict[str, object]", spec)["values"]
        if not isinstance(spec, list):
            msg = f"Parameter '{name}' must be a list of values"
            raise ValueError(msg)
        values: list[ParamValue] = []
        for value in cast("list[object]", spec):
            if not isinstance(value, SCALAR_TYPES):
                msg = (
                    f"Parameter '{name}' has unsupported value {value!r} "
                    "(expected bool, number or string)"
                )
                raise ValueError(msg)
            values.append(value)
        grid[str(name)] = values
    return grid


def _number(data: Mapping[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"'{key}' must be a number, got {value!r}"
        raise ValueError(msg)
    return float(value)


def _flag(data: Mapping[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        msg = f"'{key}' must be true or false, got {value!r}"
        raise ValueError(msg)
    return value


def _optional_int(data: Mapping[str, object], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"'{key}' must be an integer, got {value!r}"
        raise ValueError(msg)
    return value


def generate_grid_combinations(
    parameters: Mapping[str, Sequence[ParamValue]],
) -> Iterator[ParameterAssignment]:
    """Generate all combinations for a grid sweep.

    The first flag varies slowest. An empty grid yields a single empty
    assignment.
    """
    param_names = list(parameters)
    param_values = [list(parameters[name]) for name in param_names]

    for combo in itertools.product(*param_values):
        yield dict(zip(param_names, combo))


def order_combinations(
    combinations: Iterable[ParameterAssignment],
    randomize: bool = False,
    seed: int | None = None,
    max_runs: int | None = None,
) -> list[ParameterAssignment]:
    """Put combinations in run order, optionally shuffled and truncated."""
    ordered = list(combinations)
    if randomize:
        rng = random.Random(seed)  # noqa: S311
        rng.shuffle(ordered)
    if max_runs is not None:
        ordered = ordered[:max_runs]
    return ordered


def build_command(
    base_command: Sequence[str],
    assignment: Mapping[str, ParamValue],
) -> list[str]:
    """Build a command list from the base command and one assignment.

    ``True`` adds the bare flag, ``False`` omits it, any other value adds
    the flag followed by the value's string form.
    """
    command = list(base_command)
    for key, value in assignment.items():
        if isinstance(value, bool):
            if value:
                command.append(key)
        else:
            command.extend([key, str(value)])
    return command


def plan_sweep(sweep: SweepConfig) -> list[PlannedRun]:
    """Expand a sweep into the ordered list of runs it will execute."""
    combinations = order_combinations(
        generate_grid_combinations(sweep.parameters),
        randomize=sweep.randomize,
        seed=sweep.seed,
        max_runs=sweep.max_runs,
    )
    return [
        PlannedRun(
            index=i,
            assignment=assignment,
            command=build_command(sweep.command, assignment),
        )
        for i, assignment in enumerate(combinations)
    ]
