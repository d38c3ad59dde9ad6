"""Stack state — what the reconciler last applied, and the export registry built from it."""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field

from stackwright.errors import ExportConflictError
from stackwright.graph import DependencyGraph

logger = logging.getLogger(__name__)

_STACK_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9-]{0,127}$")


def validate_stack_name(name: str) -> str:
    if not _STACK_NAME.match(name):
        raise ValueError(
            f"Stack name {name!r} must start with a letter and contain only letters, digits and hyphens"
        )
    return name


class ResourceState(BaseModel):
    """One resource as the provider reports it."""

    logical_id: str
    type: str
    physical_id: str
    properties: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    deletion_policy: str = "Delete"
    request_token: str = ""


class StackState(BaseModel):
    stack_name: str
    region: str = "us-east-1"
    account_id: str = ""
    serial: int = 0
    updated_at: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    resources: dict[str, ResourceState] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    exports: dict[str, Any] = Field(default_factory=dict)
    imports: list[str] = Field(default_factory=list)

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)

    def touch(self) -> None:
        self.serial += 1
        self.updated_at = datetime.datetime.now(datetime.timezone.utc).isoformat()


class ObservedState:
    """Read-only snapshot of live resources for one plan.

    Built once before planning; the planner and executor only read it.
    """

    def __init__(self, stack: StackState | None, resources: Mapping[str, ResourceState] | None = None):
        self.stack = stack
        if resources is None:
            resources = dict(stack.resources) if stack else {}
        self._resources = MappingProxyType(dict(resources))

    @property
    def resources(self) -> Mapping[str, ResourceState]:
        return self._resources

    def get(self, logical_id: str) -> ResourceState | None:
        return self._resources.get(logical_id)

    def __contains__(self, logical_id: str) -> bool:
        return logical_id in self._resources

    def graph(self) -> DependencyGraph:
        """Dependency graph recorded when these resources were applied."""
        return DependencyGraph(self._resources, {lid: r.dependencies for lid, r in self._resources.items()})

    @property
    def exports(self) -> dict[str, Any]:
        return dict(self.stack.exports) if self.stack else {}


class ExportRegistry(Mapping[str, Any]):
    """Read-only export name -> value lookup across already-applied stacks."""

    def __init__(self, states: list[StackState]):
        self._values: dict[str, Any] = {}
        self._owners: dict[str, str] = {}
        self._importers: dict[str, list[str]] = {}
        for state in states:
            for name, value in state.exports.items():
                if name in self._owners:
                    raise ExportConflictError(name, self._owners[name])
                self._values[name] = value
                self._owners[name] = state.stack_name
            for name in state.imports:
                self._importers.setdefault(name, []).append(state.stack_name)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def owner(self, name: str) -> str | None:
        return self._owners.get(name)

    def importers(self, name: str) -> list[str]:
        return sorted(self._importers.get(name, []))


class StateStore:
    """Stack states as JSON files, one per stack, under ``state_dir``."""

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)

    def path_for(self, stack_name: str) -> Path:
        return self.state_dir / f"{validate_stack_name(stack_name)}.json"

    def load(self, stack_name: str) -> StackState | None:
        path = self.path_for(stack_name)
        if not path.exists():
            return None
        return StackState.model_validate_json(path.read_text())

    def save(self, state: StackState) -> Path:
        path = self.path_for(state.stack_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(state.to_json())
        tmp.replace(path)
        logger.debug("Saved state for %s (serial %d) to %s", state.stack_name, state.serial, path)
        return path

    def delete(self, stack_name: str) -> None:
        path = self.path_for(stack_name)
        if path.exists():
            path.unlink()

    def list_stacks(self) -> list[str]:
        if not self.state_dir.is_dir():
            return []
        return sorted(p.stem for p in self.state_dir.glob("*.json"))

    def export_registry(self, exclude: str | None = None) -> ExportRegistry:
        """Exports of every stored stack except ``exclude`` (the stack being planned)."""
        states = []
        for name in self.list_stacks():
            if name == exclude:
                continue
            state = self.load(name)
            if state is not None:
                states.append(state)
        return ExportRegistry(states)
