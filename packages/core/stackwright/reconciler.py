"""Reconciler — the validate / plan / apply / destroy pipeline for one stack.

Ties the pieces together: parse the template, resolve parameters, evaluate,
graph, snapshot observed state, plan, execute, and record the new state.
Everything up to and including ``plan`` is free of side effects.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from stackwright.catalog import ResourceCatalog, get_catalog
from stackwright.config import ReconcilerConfig
from stackwright.evaluator import NamingContext, ResolvedTemplate, evaluate
from stackwright.executor import ApplyReport, Executor, OperationResult
from stackwright.graph import DependencyGraph
from stackwright.parameters import resolve_parameters
from stackwright.parser import parse_file
from stackwright.planner import Action, Plan, Planner
from stackwright.provider import ResourceProvider, get_provider
from stackwright.state import ObservedState, ResourceState, StackState, StateStore, validate_stack_name
from stackwright.template import Template
from stackwright.values import ResourceRef, is_deferred, materialize

logger = logging.getLogger(__name__)


@dataclass
class Validation:
    """Everything that can be known about a template without touching a provider."""

    template: Template
    resolved: ResolvedTemplate
    graph: DependencyGraph
    order: list[str]


class Reconciler:
    def __init__(
        self,
        config: ReconcilerConfig | None = None,
        provider: ResourceProvider | None = None,
        store: StateStore | None = None,
        catalog: ResourceCatalog | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.config = config or ReconcilerConfig()
        self.catalog = catalog or get_catalog()
        self.store = store or StateStore(self.config.state_dir)
        self._provider = provider
        self._sleep = sleep

    @property
    def provider(self) -> ResourceProvider:
        if self._provider is None:
            options = dict(self.config.provider_options)
            if self.config.provider == "local":
                options.setdefault("store_path", self.config.local_store)
                options.setdefault("catalog", self.catalog)
            self._provider = get_provider(self.config.provider, **options)
        return self._provider

    # ------------------------------------------------------------------
    # Pure stages
    # ------------------------------------------------------------------

    def load(self, template: Template | str | Path) -> Template:
        if isinstance(template, Template):
            return template
        return parse_file(template, self.catalog)

    def context(self, template: Template, stack_name: str, parameters: Mapping[str, Any] | None = None) -> NamingContext:
        return NamingContext(
            stack_name=validate_stack_name(stack_name),
            parameters=resolve_parameters(template, parameters),
            region=self.config.region,
            account_id=self.config.account_id,
            partition=self.config.partition,
        )

    def validate(
        self,
        template: Template | str | Path,
        stack_name: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> Validation:
        """Parse, resolve parameters, evaluate and order; raises on the first problem."""
        template = self.load(template)
        context = self.context(template, stack_name, parameters)
        resolved = evaluate(template, context, self.catalog, self.store.export_registry(exclude=stack_name))
        graph = DependencyGraph.from_resolved(resolved)
        order = graph.topological_order()
        logger.debug("Resolved %d resources for %s: %s", len(order), stack_name, order)
        return Validation(template=template, resolved=resolved, graph=graph, order=order)

    # ------------------------------------------------------------------
    # Observed state
    # ------------------------------------------------------------------

    def observe(self, stack_name: str, refresh: bool = True) -> ObservedState:
        """Snapshot of the stack's resources, optionally refreshed from the provider.

        Resources the provider no longer knows are dropped, so the next plan
        recreates them.
        """
        state = self.store.load(stack_name)
        if state is None or not refresh:
            return ObservedState(state)
        resources: dict[str, ResourceState] = {}
        for logical_id, resource in state.resources.items():
            event = self.provider.read(resource.type, resource.physical_id)
            if event is None:
                logger.warning("%s (%s) no longer exists; it will be recreated", logical_id, resource.physical_id)
                continue
            resources[logical_id] = resource.model_copy(
                update={"properties": event.properties, "attributes": event.attributes}
            )
        return ObservedState(state, resources)

    # ------------------------------------------------------------------
    # Plan / apply / destroy
    # ------------------------------------------------------------------

    def _planner(self, stack_name: str) -> Planner:
        return Planner(
            catalog=self.catalog,
            replacement_policy=self.config.replacement_policy,
            exports=self.store.export_registry(exclude=stack_name),
        )

    def plan(
        self,
        template: Template | str | Path,
        stack_name: str,
        parameters: Mapping[str, Any] | None = None,
        refresh: bool = True,
    ) -> Plan:
        validation = self.validate(template, stack_name, parameters)
        observed = self.observe(stack_name, refresh=refresh)
        return self._planner(stack_name).plan(validation.resolved, observed)

    def plan_destroy(self, stack_name: str, refresh: bool = True) -> Plan:
        validate_stack_name(stack_name)
        observed = self.observe(stack_name, refresh=refresh)
        return self._planner(stack_name).plan(None, observed, stack_name=stack_name)

    def apply(
        self,
        plan: Plan,
        cancel: threading.Event | None = None,
        on_event: Callable[[str, OperationResult], None] | None = None,
    ) -> ApplyReport:
        """Execute ``plan`` and record the resulting stack state, even after a partial failure."""
        executor = Executor.from_config(self.provider, self.config, self.catalog)
        if self._sleep is not None:
            executor._sleep = self._sleep
        report = executor.execute(plan, cancel=cancel, on_event=on_event)
        self._record_state(plan, report)
        return report

    def destroy(self, stack_name: str, cancel: threading.Event | None = None) -> ApplyReport:
        return self.apply(self.plan_destroy(stack_name), cancel=cancel)

    def outputs(self, stack_name: str) -> dict[str, Any]:
        state = self.store.load(stack_name)
        if state is None:
            raise FileNotFoundError(f"No state recorded for stack {stack_name!r}")
        return dict(state.outputs)

    # ------------------------------------------------------------------
    # State recording
    # ------------------------------------------------------------------

    def _record_state(self, plan: Plan, report: ApplyReport) -> None:
        observed = plan.observed or ObservedState(None)
        previous = observed.stack
        resources: dict[str, ResourceState] = dict(observed.resources)

        for result in report.failed:
            if result.removed:
                resources.pop(result.logical_id, None)

        for result in report.succeeded:
            if result.action == Action.DELETE:
                resources.pop(result.logical_id, None)
                continue
            resources[result.logical_id] = ResourceState(
                logical_id=result.logical_id,
                type=result.resource_type,
                physical_id=result.physical_id or "",
                properties=result.properties,
                attributes=result.attributes,
                request_token=result.request_token,
            )

        resolved = plan.resolved
        if resolved is not None:
            for logical_id, resource in resolved.resources.items():
                if logical_id in resources:
                    resources[logical_id] = resources[logical_id].model_copy(
                        update={
                            "dependencies": sorted(resource.dependencies),
                            "deletion_policy": resource.deletion_policy,
                        }
                    )

        if not resources and plan.is_destroy and report.success:
            self.store.delete(plan.stack_name)
            logger.info("Stack %s destroyed; state removed", plan.stack_name)
            return

        def lookup(ref: ResourceRef) -> Any:
            resource = resources[ref.logical_id]
            return resource.physical_id if ref.attribute is None else resource.attributes[ref.attribute]

        outputs: dict[str, Any] = {}
        exports: dict[str, Any] = {}
        if resolved is not None:
            for name, output in resolved.outputs.items():
                value = materialize(output.value, lookup)
                if is_deferred(value):
                    continue
                outputs[name] = value
                if output.export_name:
                    exports[output.export_name] = value
        elif previous is not None:
            outputs, exports = dict(previous.outputs), dict(previous.exports)

        state = StackState(
            stack_name=plan.stack_name,
            region=resolved.context.region if resolved else (previous.region if previous else self.config.region),
            account_id=resolved.context.account_id if resolved else (previous.account_id if previous else ""),
            serial=previous.serial if previous else 0,
            parameters=resolved.context.parameters.masked() if resolved else (previous.parameters if previous else {}),
            resources={lid: resources[lid] for lid in _state_order(resources, resolved)},
            outputs=outputs,
            exports=exports,
            imports=sorted(resolved.imports) if resolved else (previous.imports if previous else []),
        )
        state.touch()
        self.store.save(state)


def _state_order(resources: Mapping[str, ResourceState], resolved: ResolvedTemplate | None) -> list[str]:
    """Dependency order of the recorded resources, ties broken by template declaration order."""
    declared = [lid for lid in (resolved.resources if resolved else ()) if lid in resources]
    nodes = declared + [lid for lid in resources if lid not in declared]
    return DependencyGraph(nodes, {lid: r.dependencies for lid, r in resources.items()}).topological_order()
