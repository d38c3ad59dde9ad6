"""Template — the typed in-memory form of a stack template.

Everything flows through Template: the parser builds it, the evaluator
resolves it, the grapher orders it and the planner diffs it against state.
Field aliases keep the CloudFormation key names of the source document.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_LOGICAL_ID = re.compile(r"^[A-Za-z0-9]+$")


def _truthy(v: Any) -> bool:
    if isinstance(v, str):
        return v.lower() == "true"
    return bool(v)


class Parameter(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    name: str
    type: str = Field(alias="Type")
    default: Any = Field(None, alias="Default")
    description: str = Field("", alias="Description")
    allowed_values: list[Any] | None = Field(None, alias="AllowedValues")
    allowed_pattern: str | None = Field(None, alias="AllowedPattern")
    min_length: int | None = Field(None, alias="MinLength")
    max_length: int | None = Field(None, alias="MaxLength")
    min_value: float | None = Field(None, alias="MinValue")
    max_value: float | None = Field(None, alias="MaxValue")
    constraint_description: str = Field("", alias="ConstraintDescription")
    no_echo: bool = Field(False, alias="NoEcho")

    @field_validator("no_echo", mode="before")
    @classmethod
    def _coerce_no_echo(cls, v: Any) -> bool:
        return _truthy(v)

    @property
    def has_default(self) -> bool:
        return self.default is not None


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    expression: Any


class Mapping(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    entries: dict[str, dict[str, Any]]

    def lookup(self, top_key: str, second_key: str) -> Any:
        return self.entries[top_key][second_key]


class ResourceDecl(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    logical_id: str
    type: str = Field(alias="Type")
    properties: dict[str, Any] = Field(default_factory=dict, alias="Properties")
    depends_on: list[str] = Field(default_factory=list, alias="DependsOn")
    condition: str | None = Field(None, alias="Condition")
    deletion_policy: Literal["Delete", "Retain"] = Field("Delete", alias="DeletionPolicy")
    metadata: dict[str, Any] = Field(default_factory=dict, alias="Metadata")

    @field_validator("logical_id")
    @classmethod
    def validate_logical_id(cls, v: str) -> str:
        if not _LOGICAL_ID.match(v):
            raise ValueError(f"Logical id {v!r} must be alphanumeric")
        return v

    @field_validator("depends_on", mode="before")
    @classmethod
    def _coerce_depends_on(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("properties", mode="before")
    @classmethod
    def _coerce_properties(cls, v: Any) -> Any:
        return v or {}


class Output(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    name: str
    value: Any = Field(alias="Value")
    description: str = Field("", alias="Description")
    export: dict[str, Any] | None = Field(None, alias="Export")
    condition: str | None = Field(None, alias="Condition")

    @property
    def export_name(self) -> Any:
        """The unevaluated export name expression, or None."""
        return (self.export or {}).get("Name")


class Template(BaseModel):
    """The parsed template. Immutable; evaluation never mutates it."""

    model_config = ConfigDict(frozen=True)

    format_version: str = "2010-09-09"
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    parameters: dict[str, Parameter] = Field(default_factory=dict)
    conditions: dict[str, Condition] = Field(default_factory=dict)
    mappings: dict[str, Mapping] = Field(default_factory=dict)
    resources: dict[str, ResourceDecl] = Field(default_factory=dict)
    outputs: dict[str, Output] = Field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> Template:
        from stackwright.parser import parse_file

        return parse_file(path)

    @classmethod
    def from_yaml(cls, text: str) -> Template:
        from stackwright.parser import parse_text

        return parse_text(text)

    def declaration_index(self) -> dict[str, int]:
        """Position of each resource in the document, used for deterministic tie-breaking."""
        return {logical_id: i for i, logical_id in enumerate(self.resources)}
