"""Diff planner — desired graph vs observed state -> ordered list of operations.

Each desired resource gets exactly one action (no-op, create, update or
replace) and each observed resource that is no longer desired gets a delete.
Non-delete operations follow the desired topological order; deletes follow
the reverse of the observed graph so dependents go first.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from stackwright.catalog import ResourceCatalog, get_catalog
from stackwright.errors import ExportConflictError, ExportInUseError, UnsafeReplacementError
from stackwright.evaluator import Excluded, ResolvedResource, ResolvedTemplate
from stackwright.graph import DependencyGraph
from stackwright.state import ExportRegistry, ObservedState, ResourceState
from stackwright.values import ResourceRef, is_deferred, materialize, normalize, to_display

logger = logging.getLogger(__name__)


class Action(str, Enum):
    NO_OP = "no-op"
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"


class ReplacementPolicy(str, Enum):
    BLOCK = "block"
    WARN = "warn"


@dataclass
class PropertyChange:
    name: str
    before: Any
    after: Any
    requires_replacement: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "before": to_display(self.before),
            "after": to_display(self.after),
            "requires_replacement": self.requires_replacement,
        }


@dataclass
class ResourceChange:
    """One planned operation on one logical resource."""

    logical_id: str
    action: Action
    resource_type: str
    properties: dict[str, Any] = field(default_factory=dict)
    changes: list[PropertyChange] = field(default_factory=list)
    physical_id: str | None = None
    previous_type: str | None = None
    depends_on: list[str] = field(default_factory=list)
    retain: bool = False
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "logical_id": self.logical_id,
            "action": self.action.value,
            "type": self.resource_type,
            "physical_id": self.physical_id,
            "depends_on": list(self.depends_on),
        }
        if self.reason:
            data["reason"] = self.reason
        if self.retain:
            data["retain"] = True
        if self.action in (Action.CREATE, Action.UPDATE, Action.REPLACE):
            data["properties"] = to_display(self.properties)
        if self.changes:
            data["changes"] = [c.to_dict() for c in self.changes]
        return data


@dataclass
class Plan:
    """Ordered operations for one stack plus what the apply needs to carry them out."""

    stack_name: str
    changes: list[ResourceChange]
    unchanged: list[str] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    exports: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    plan_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    resolved: ResolvedTemplate | None = None
    observed: ObservedState | None = None

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def is_destroy(self) -> bool:
        return self.resolved is None

    def get(self, logical_id: str) -> ResourceChange | None:
        for change in self.changes:
            if change.logical_id == logical_id:
                return change
        return None

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action if a != Action.NO_OP}
        for change in self.changes:
            counts[change.action.value] += 1
        counts[Action.NO_OP.value] = len(self.unchanged)
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "stack_name": self.stack_name,
            "plan_id": self.plan_id,
            "summary": self.summary(),
            "changes": [c.to_dict() for c in self.changes],
            "unchanged": list(self.unchanged),
            "outputs": to_display(self.outputs),
            "exports": dict(self.exports),
            "warnings": list(self.warnings),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class Planner:
    """Computes a Plan. Pure: reads the resolved template and observed snapshot only."""

    def __init__(
        self,
        catalog: ResourceCatalog | None = None,
        replacement_policy: ReplacementPolicy | str = ReplacementPolicy.BLOCK,
        exports: ExportRegistry | None = None,
    ):
        self.catalog = catalog or get_catalog()
        self.replacement_policy = ReplacementPolicy(replacement_policy)
        self.exports = exports or ExportRegistry([])

    def plan(self, resolved: ResolvedTemplate | None, observed: ObservedState, stack_name: str | None = None) -> Plan:
        """Plan ``resolved`` against ``observed``; ``resolved=None`` plans a destroy."""
        if resolved is not None:
            stack_name = resolved.context.stack_name
        elif stack_name is None:
            stack_name = observed.stack.stack_name if observed.stack else ""

        desired = resolved.resources if resolved is not None else {}
        desired_graph = DependencyGraph.from_resolved(resolved) if resolved is not None else DependencyGraph([])
        observed_graph = observed.graph()
        warnings: list[str] = []

        decisions: dict[str, ResourceChange] = {}
        unchanged: list[str] = []
        known: dict[str, ResourceState] = {}

        for logical_id in desired_graph.topological_order():
            resource = desired[logical_id]
            change = self._decide(resource, observed.get(logical_id), known)
            if change.action == Action.NO_OP:
                unchanged.append(logical_id)
            else:
                decisions[logical_id] = change
            if change.action in (Action.NO_OP, Action.UPDATE):
                known[logical_id] = observed.get(logical_id)

        for logical_id in observed_graph.reverse_topological_order():
            if logical_id in desired:
                continue
            state = observed.get(logical_id)
            inclusion = resolved.inclusions.get(logical_id) if resolved is not None else None
            if isinstance(inclusion, Excluded):
                reason = f"excluded by condition {inclusion.condition}"
            else:
                reason = "no longer declared"
            decisions[logical_id] = ResourceChange(
                logical_id=logical_id,
                action=Action.DELETE,
                resource_type=state.type,
                physical_id=state.physical_id,
                retain=state.deletion_policy == "Retain",
                reason=reason,
            )

        for change in decisions.values():
            if change.action == Action.REPLACE:
                self._check_replacement(change, desired, desired_graph, decisions, warnings)

        outputs: dict[str, Any] = {}
        exports: dict[str, str] = {}
        if resolved is not None:
            lookup = _lookup(known)
            for name, output in resolved.outputs.items():
                outputs[name] = materialize(output.value, lookup)
                if output.export_name:
                    exports[output.export_name] = name
        self._check_exports(observed, exports, outputs, stack_name)

        ordered = self._order(decisions, desired, desired_graph, observed_graph)
        plan = Plan(
            stack_name=stack_name,
            changes=ordered,
            unchanged=unchanged,
            outputs=outputs,
            exports=exports,
            warnings=warnings,
            resolved=resolved,
            observed=observed,
        )
        logger.info("Plan for %s: %s", stack_name, plan.summary())
        return plan

    # ------------------------------------------------------------------
    # Per-resource decisions
    # ------------------------------------------------------------------

    def _decide(
        self, resource: ResolvedResource, state: ResourceState | None, known: dict[str, ResourceState]
    ) -> ResourceChange:
        properties = materialize(resource.properties, _lookup(known))
        base = dict(
            logical_id=resource.logical_id,
            resource_type=resource.type,
            properties=properties,
        )
        if state is None:
            return ResourceChange(action=Action.CREATE, reason="not yet created", **base)

        if state.type != resource.type:
            return ResourceChange(
                action=Action.REPLACE,
                physical_id=state.physical_id,
                previous_type=state.type,
                reason=f"type changed from {state.type}",
                **base,
            )

        type_def = self.catalog.get(resource.type)
        changes = _diff_properties(state.properties, properties)
        for change in changes:
            change.requires_replacement = type_def is not None and type_def.requires_replacement(change.name)
        if not changes:
            return ResourceChange(action=Action.NO_OP, physical_id=state.physical_id, **base)

        forcing = [c.name for c in changes if c.requires_replacement]
        if forcing:
            return ResourceChange(
                action=Action.REPLACE,
                changes=changes,
                physical_id=state.physical_id,
                reason=f"{', '.join(forcing)} cannot change in place",
                **base,
            )
        return ResourceChange(action=Action.UPDATE, changes=changes, physical_id=state.physical_id, **base)

    def _check_replacement(
        self,
        change: ResourceChange,
        desired: dict[str, ResolvedResource],
        desired_graph: DependencyGraph,
        decisions: dict[str, ResourceChange],
        warnings: list[str],
    ) -> None:
        """Replacing a resource leaves a gap; every existing dependent must tolerate it."""
        intolerant = []
        for dependent in sorted(desired_graph.dependents_of(change.logical_id), key=desired_graph.nodes.index):
            decision = decisions.get(dependent)
            if decision is not None and decision.action == Action.CREATE:
                continue
            type_def = self.catalog.get(desired[dependent].type)
            if type_def is None or not type_def.tolerates_transient_absence:
                intolerant.append(dependent)
        if not intolerant:
            return

        forcing = [c.name for c in change.changes if c.requires_replacement]
        error = UnsafeReplacementError(change.logical_id, intolerant, forcing)
        if self.replacement_policy == ReplacementPolicy.BLOCK:
            raise error
        logger.warning("%s", error)
        warnings.append(str(error))

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------

    def _check_exports(
        self, observed: ObservedState, exports: dict[str, str], outputs: dict[str, Any], stack_name: str
    ) -> None:
        for export_name in exports:
            owner = self.exports.owner(export_name)
            if owner is not None and owner != stack_name:
                raise ExportConflictError(export_name, owner)

        for export_name, current in observed.exports.items():
            importers = [s for s in self.exports.importers(export_name) if s != stack_name]
            if not importers:
                continue
            if export_name not in exports:
                raise ExportInUseError(export_name, importers)
            desired = outputs[exports[export_name]]
            if is_deferred(desired) or normalize(desired) != normalize(current):
                raise ExportInUseError(export_name, importers)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def _order(
        self,
        decisions: dict[str, ResourceChange],
        desired: dict[str, ResolvedResource],
        desired_graph: DependencyGraph,
        observed_graph: DependencyGraph,
    ) -> list[ResourceChange]:
        """Link operations and return them in a deterministic dispatch order.

        A create/update/replace waits for operations on everything it
        transitively depends on, including through unchanged resources.
        A delete waits for every operation on resources that used to
        depend on it, so nothing still points at it when it goes.
        A replace also waits for deletes of its former dependents.
        """
        non_deletes = [lid for lid in desired_graph.topological_order() if lid in decisions]
        deletes = [lid for lid, c in decisions.items() if c.action == Action.DELETE]
        op_graph = DependencyGraph(non_deletes + deletes)

        for logical_id in non_deletes:
            change = decisions[logical_id]
            for dep in desired_graph.ancestors_of(logical_id):
                if dep in decisions:
                    op_graph.add_edge(dep, logical_id)
            if change.action == Action.REPLACE and logical_id in observed_graph:
                for former in observed_graph.dependents_of(logical_id):
                    if former in decisions and decisions[former].action == Action.DELETE:
                        op_graph.add_edge(former, logical_id)

        for logical_id in deletes:
            for former in observed_graph.dependents_of(logical_id):
                if former in decisions:
                    op_graph.add_edge(former, logical_id)

        ordered = []
        for logical_id in op_graph.topological_order():
            change = decisions[logical_id]
            change.depends_on = sorted(op_graph.dependencies_of(logical_id), key=op_graph.nodes.index)
            ordered.append(change)
        return ordered


def _lookup(known: dict[str, ResourceState]):
    """Resolve references to resources whose identity survives this plan."""

    def lookup(ref: ResourceRef) -> Any:
        state = known[ref.logical_id]
        if ref.attribute is None:
            return state.physical_id
        return state.attributes[ref.attribute]

    return lookup


def _diff_properties(before: dict[str, Any], after: dict[str, Any]) -> list[PropertyChange]:
    changes = []
    for name in sorted(set(before) | set(after)):
        if name not in after:
            changes.append(PropertyChange(name, before[name], None))
        elif name not in before:
            changes.append(PropertyChange(name, None, after[name]))
        elif is_deferred(after[name]) or normalize(before[name]) != normalize(after[name]):
            changes.append(PropertyChange(name, before[name], after[name]))
    return changes
