"""Executor — applies a Plan through a provider with a bounded worker pool.

An operation is dispatched once every operation it depends on has
succeeded. Transient provider errors are retried with exponential backoff,
re-checking observed state first so a call that landed is never repeated.
The first failure stops new dispatches; in-flight operations finish. There
is no automatic rollback: the report says exactly what happened.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from stackwright.catalog import ResourceCatalog, get_catalog
from stackwright.errors import (
    PermanentProviderError,
    ProviderError,
    StabilizationTimeout,
    TransientProviderError,
)
from stackwright.planner import Action, Plan, ResourceChange
from stackwright.provider import ProgressEvent, ResourceProvider, ResourceRequest
from stackwright.state import ResourceState
from stackwright.values import ResourceRef, is_deferred, materialize, normalize

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    logical_id: str
    action: Action
    resource_type: str
    physical_id: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    request_token: str = ""
    attempts: int = 0
    duration: float = 0.0
    error: str | None = None
    # the previous physical resource no longer exists (replace that failed after its delete)
    removed: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "logical_id": self.logical_id,
            "action": self.action.value,
            "type": self.resource_type,
            "physical_id": self.physical_id,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ApplyReport:
    """Outcome of one apply: nothing is left unaccounted for."""

    stack_name: str
    succeeded: list[OperationResult] = field(default_factory=list)
    failed: list[OperationResult] = field(default_factory=list)
    not_attempted: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.failed and not self.not_attempted

    def result(self, logical_id: str) -> OperationResult | None:
        for result in [*self.succeeded, *self.failed]:
            if result.logical_id == logical_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stack_name": self.stack_name,
            "success": self.success,
            "cancelled": self.cancelled,
            "succeeded": [r.to_dict() for r in self.succeeded],
            "failed": [r.to_dict() for r in self.failed],
            "not_attempted": list(self.not_attempted),
        }


class Executor:
    def __init__(
        self,
        provider: ResourceProvider,
        catalog: ResourceCatalog | None = None,
        max_workers: int = 4,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        poll_interval: float = 2.0,
        stabilize_timeout: float = 600,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.catalog = catalog or get_catalog()
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.poll_interval = poll_interval
        self.stabilize_timeout = stabilize_timeout
        self._sleep = sleep

    @classmethod
    def from_config(cls, provider: ResourceProvider, config, catalog: ResourceCatalog | None = None) -> Executor:
        return cls(
            provider,
            catalog=catalog,
            max_workers=config.max_workers,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            poll_interval=config.poll_interval,
            stabilize_timeout=config.stabilize_timeout,
        )

    def execute(
        self,
        plan: Plan,
        cancel: threading.Event | None = None,
        on_event: Callable[[str, OperationResult], None] | None = None,
    ) -> ApplyReport:
        """Run every operation of ``plan``; never raises for provider failures."""
        cancel = cancel or threading.Event()
        report = ApplyReport(stack_name=plan.stack_name)
        known = self._initial_known(plan)
        ops = {change.logical_id: change for change in plan.changes}
        done: set[str] = set()
        started: set[str] = set()
        halted = False
        futures: dict[Future, ResourceChange] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="stackwright") as pool:
            while True:
                if not halted and cancel.is_set():
                    logger.warning("Apply of %s cancelled; no further operations will start", plan.stack_name)
                    report.cancelled = True
                    halted = True

                if not halted:
                    for change in plan.changes:
                        lid = change.logical_id
                        if lid in started or not all(dep in done for dep in change.depends_on if dep in ops):
                            continue
                        started.add(lid)
                        try:
                            properties = self._materialize(change, known)
                        except PermanentProviderError as e:
                            report.failed.append(self._failure(change, e, 0, 0.0))
                            halted = True
                            break
                        logger.info("Dispatching %s %s (%s)", change.action.value, lid, change.resource_type)
                        futures[pool.submit(self._run, plan, change, properties)] = change

                if not futures:
                    break

                finished, _ = wait(futures, return_when=FIRST_COMPLETED)
                for future in finished:
                    change = futures.pop(future)
                    result = future.result()
                    if result.error is None:
                        report.succeeded.append(result)
                        done.add(change.logical_id)
                        self._record(known, result)
                        logger.info("Completed %s %s", change.action.value, change.logical_id)
                        if on_event:
                            on_event("succeeded", result)
                    else:
                        report.failed.append(result)
                        halted = True
                        logger.error("Failed %s %s: %s", change.action.value, change.logical_id, result.error)
                        if on_event:
                            on_event("failed", result)

        report.not_attempted = [c.logical_id for c in plan.changes if c.logical_id not in started]
        return report

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    @staticmethod
    def _initial_known(plan: Plan) -> dict[str, tuple[str, dict[str, Any]]]:
        known: dict[str, tuple[str, dict[str, Any]]] = {}
        if plan.observed is None:
            return known
        for logical_id, state in plan.observed.resources.items():
            change = plan.get(logical_id)
            if change is None or change.action == Action.UPDATE:
                known[logical_id] = (state.physical_id, dict(state.attributes))
        return known

    @staticmethod
    def _record(known: dict[str, tuple[str, dict[str, Any]]], result: OperationResult) -> None:
        if result.action == Action.DELETE:
            known.pop(result.logical_id, None)
        else:
            known[result.logical_id] = (result.physical_id or "", dict(result.attributes))

    @staticmethod
    def _materialize(change: ResourceChange, known: dict[str, tuple[str, dict[str, Any]]]) -> dict[str, Any]:
        if change.action == Action.DELETE:
            return {}

        def lookup(ref: ResourceRef) -> Any:
            physical_id, attributes = known[ref.logical_id]
            return physical_id if ref.attribute is None else attributes[ref.attribute]

        properties = materialize(change.properties, lookup)
        if is_deferred(properties):
            raise PermanentProviderError(
                f"{change.logical_id} still has unresolved references after its dependencies completed",
                change.resource_type,
                change.logical_id,
            )
        return properties

    # ------------------------------------------------------------------
    # One operation (runs on a worker thread)
    # ------------------------------------------------------------------

    def _run(self, plan: Plan, change: ResourceChange, properties: dict[str, Any]) -> OperationResult:
        started = time.monotonic()
        attempts = [0]
        removed = False
        token = f"{plan.stack_name}-{change.logical_id}-{plan.plan_id}"
        try:
            if change.action == Action.DELETE:
                if change.retain:
                    logger.info("Retaining %s (%s); removing it from state only", change.logical_id, change.physical_id)
                else:
                    self._delete(change, change.resource_type, change.physical_id, attempts)
                return OperationResult(
                    logical_id=change.logical_id,
                    action=change.action,
                    resource_type=change.resource_type,
                    physical_id=change.physical_id,
                    attempts=attempts[0],
                    duration=time.monotonic() - started,
                )

            if change.action == Action.REPLACE:
                self._delete(change, change.previous_type or change.resource_type, change.physical_id, attempts)
                removed = True

            request = ResourceRequest(
                logical_id=change.logical_id,
                resource_type=change.resource_type,
                properties=properties,
                stack_name=plan.stack_name,
                request_token=token,
                region=plan.resolved.context.region if plan.resolved else "us-east-1",
                account_id=plan.resolved.context.account_id if plan.resolved else "",
                partition=plan.resolved.context.partition if plan.resolved else "aws",
            )
            if change.action == Action.UPDATE:
                request.physical_id = change.physical_id
                request.previous_properties = _previous(plan, change.logical_id)
                event = self._update(request, attempts)
            else:
                event = self._create(request, attempts)
            event = self._stabilize(change, event)
            return OperationResult(
                logical_id=change.logical_id,
                action=change.action,
                resource_type=change.resource_type,
                physical_id=event.physical_id,
                properties=properties,
                attributes=dict(event.attributes),
                request_token=token,
                attempts=attempts[0],
                duration=time.monotonic() - started,
            )
        except ProviderError as e:
            result = self._failure(change, e, attempts[0], time.monotonic() - started)
            result.removed = removed
            return result
        except Exception as e:
            logger.exception("Unexpected error applying %s", change.logical_id)
            result = self._failure(change, e, attempts[0], time.monotonic() - started)
            result.removed = removed
            return result

    def _create(self, request: ResourceRequest, attempts: list[int]) -> ProgressEvent:
        def recheck() -> ProgressEvent | None:
            return self.provider.find_by_token(request.resource_type, request.request_token)

        return self._with_retries(lambda: self.provider.create(request), recheck, request.logical_id, attempts)

    def _update(self, request: ResourceRequest, attempts: list[int]) -> ProgressEvent:
        def recheck() -> ProgressEvent | None:
            event = self.provider.read(request.resource_type, request.physical_id or "")
            if event is not None and normalize(event.properties) == normalize(request.properties):
                return event
            return None

        return self._with_retries(lambda: self.provider.update(request), recheck, request.logical_id, attempts)

    def _delete(self, change: ResourceChange, resource_type: str, physical_id: str | None, attempts: list[int]):
        if not physical_id:
            return

        def call() -> bool:
            self.provider.delete(resource_type, physical_id)
            return True

        def recheck() -> bool | None:
            return True if self.provider.read(resource_type, physical_id) is None else None

        self._with_retries(call, recheck, change.logical_id, attempts)

    def _with_retries(self, call: Callable[[], Any], recheck: Callable[[], Any], logical_id: str, attempts: list[int]):
        delay = self.retry_base_delay
        for attempt in range(self.max_retries + 1):
            if attempt:
                landed = recheck()
                if landed is not None:
                    logger.info("Earlier attempt on %s already took effect", logical_id)
                    return landed
            attempts[0] += 1
            try:
                return call()
            except TransientProviderError as e:
                if attempt == self.max_retries:
                    raise
                logger.warning(
                    "Transient error on %s (attempt %d/%d): %s; retrying in %.1fs",
                    logical_id,
                    attempt + 1,
                    self.max_retries + 1,
                    e,
                    delay,
                )
                self._sleep(delay)
                delay *= 2

    def _stabilize(self, change: ResourceChange, event: ProgressEvent) -> ProgressEvent:
        type_def = self.catalog.get(change.resource_type)
        if event.stable or type_def is None or not type_def.async_provisioning:
            return event
        deadline = time.monotonic() + self.stabilize_timeout
        while not event.stable:
            if time.monotonic() >= deadline:
                raise StabilizationTimeout(
                    f"{change.logical_id} did not stabilize within {self.stabilize_timeout:g}s",
                    change.resource_type,
                    change.logical_id,
                )
            self._sleep(self.poll_interval)
            try:
                current = self.provider.read(change.resource_type, event.physical_id)
            except TransientProviderError as e:
                logger.warning("Transient error polling %s: %s", change.logical_id, e)
                continue
            if current is None:
                raise PermanentProviderError(
                    f"{event.physical_id} disappeared while provisioning", change.resource_type, change.logical_id
                )
            event = current
            logger.debug("%s is %s", change.logical_id, event.status.value)
        return event

    @staticmethod
    def _failure(change: ResourceChange, error: Exception, attempts: int, duration: float) -> OperationResult:
        return OperationResult(
            logical_id=change.logical_id,
            action=change.action,
            resource_type=change.resource_type,
            physical_id=change.physical_id,
            attempts=attempts,
            duration=duration,
            error=str(error) or type(error).__name__,
        )


def _previous(plan: Plan, logical_id: str) -> dict[str, Any] | None:
    if plan.observed is None:
        return None
    state: ResourceState | None = plan.observed.get(logical_id)
    return dict(state.properties) if state else None
