# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for flagsweep."""

from __future__ import annotations

from typing import ClassVar, Union

from pydantic import BaseModel, ConfigDict
from typing_extensions import TypeAlias

ParamValue: TypeAlias = Union[bool, int, float, str]
ParameterAssignment: TypeAlias = dict[str, ParamValue]
ParameterGrid: TypeAlias = dict[str, list[ParamValue]]


class FlagsweepBaseModel(BaseModel):
    """Base model with shared config for flagsweep schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class FrozenModel(BaseModel):
    """Base model for records that must not change once created."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
    )
