"""Local provider — a simulated cloud kept in memory or in a JSON file.

Physical ids and attributes come from the ``simulation`` block of each
catalog type, so a template applies end to end without credentials. Async
types stay IN_PROGRESS for ``provisioning_polls`` reads before turning
stable. Faults can be injected per operation and logical id to exercise the
executor's retry paths.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from stackwright.catalog import ResourceCatalog, ResourceTypeDef, get_catalog
from stackwright.errors import PermanentProviderError, ProviderError
from stackwright.provider import OperationStatus, ProgressEvent, ResourceProvider, ResourceRequest
from stackwright.values import normalize, scalar_to_str

logger = logging.getLogger(__name__)


class _Record(BaseModel):
    resource_type: str
    physical_id: str
    logical_id: str
    stack_name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    request_token: str = ""
    seed: str = ""
    pending_polls: int = 0


class _CloudStore(BaseModel):
    resources: dict[str, _Record] = Field(default_factory=dict)


class _Fault:
    __slots__ = ("error", "times", "landed")

    def __init__(self, error: ProviderError, times: int, landed: bool):
        self.error = error
        self.times = times
        self.landed = landed


class _Props(dict):
    """Property view for simulation templates; unknown keys render as ''."""

    def __missing__(self, key: str) -> str:
        return ""


class LocalProvider(ResourceProvider):
    """Simulated provider backed by the resource catalog."""

    def __init__(
        self,
        store_path: str | Path | None = None,
        catalog: ResourceCatalog | None = None,
        provisioning_polls: int = 1,
    ):
        self.store_path = Path(store_path) if store_path else None
        self.catalog = catalog or get_catalog()
        self.provisioning_polls = provisioning_polls
        self._lock = threading.RLock()
        self._faults: dict[tuple[str, str], list[_Fault]] = {}
        self.calls: list[tuple[str, str]] = []
        self._store = self._load()

    @property
    def name(self) -> str:
        return "local"

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def inject_fault(self, operation: str, logical_id: str, error: ProviderError, times: int = 1, landed: bool = False):
        """Make the next ``times`` calls of ``operation`` on ``logical_id`` raise ``error``.

        With ``landed=True`` the operation takes effect before the error is
        raised, like a response lost after the cloud accepted the request.
        """
        with self._lock:
            self._faults.setdefault((operation, logical_id), []).append(_Fault(error, times, landed))

    def _next_fault(self, operation: str, logical_id: str) -> _Fault | None:
        queue = self._faults.get((operation, logical_id))
        if not queue:
            return None
        fault = queue[0]
        fault.times -= 1
        if fault.times <= 0:
            queue.pop(0)
        return fault

    # ------------------------------------------------------------------
    # ResourceProvider
    # ------------------------------------------------------------------

    def create(self, request: ResourceRequest) -> ProgressEvent:
        with self._lock:
            self.calls.append(("create", request.logical_id))
            fault = self._next_fault("create", request.logical_id)
            if fault and not fault.landed:
                raise fault.error

            existing = self._by_token(request.resource_type, request.request_token)
            if existing is not None:
                logger.debug("Create of %s already landed as %s", request.logical_id, existing.physical_id)
                return self._event(existing)

            type_def = self._type(request.resource_type, request.logical_id)
            seed = uuid.uuid4().hex
            fields = self._fields(type_def, request, seed)
            physical_id = self._render(type_def.simulation.get("physical_id"), fields) or (
                f"{request.stack_name}-{request.logical_id}-{seed[:8]}"
            )
            fields["physical_id"] = physical_id
            record = _Record(
                resource_type=request.resource_type,
                physical_id=physical_id,
                logical_id=request.logical_id,
                stack_name=request.stack_name,
                properties=dict(request.properties),
                attributes=self._attributes(type_def, fields),
                request_token=request.request_token,
                seed=seed,
                pending_polls=self.provisioning_polls if type_def.async_provisioning else 0,
            )
            self._store.resources[physical_id] = record
            self._save()
            logger.debug("Created %s %s", request.resource_type, physical_id)
            if fault:
                raise fault.error
            return self._event(record)

    def read(self, resource_type: str, physical_id: str) -> ProgressEvent | None:
        with self._lock:
            record = self._store.resources.get(physical_id)
            if record is None or record.resource_type != resource_type:
                return None
            self.calls.append(("read", record.logical_id))
            fault = self._next_fault("read", record.logical_id)
            if fault:
                raise fault.error
            event = self._event(record)
            if record.pending_polls > 0:
                record.pending_polls -= 1
                self._save()
            return event

    def update(self, request: ResourceRequest) -> ProgressEvent:
        with self._lock:
            self.calls.append(("update", request.logical_id))
            fault = self._next_fault("update", request.logical_id)
            if fault and not fault.landed:
                raise fault.error

            record = self._store.resources.get(request.physical_id or "")
            if record is None:
                raise PermanentProviderError(
                    f"{request.physical_id} does not exist", request.resource_type, request.logical_id
                )
            type_def = self._type(request.resource_type, request.logical_id)
            immutable = sorted(
                prop
                for prop in type_def.replacement
                if normalize(record.properties.get(prop)) != normalize(request.properties.get(prop))
            )
            if immutable:
                raise PermanentProviderError(
                    f"cannot update {', '.join(immutable)} in place", request.resource_type, request.logical_id
                )

            fields = self._fields(type_def, request, record.seed)
            fields["physical_id"] = record.physical_id
            record.properties = dict(request.properties)
            record.attributes = self._attributes(type_def, fields)
            if type_def.async_provisioning:
                record.pending_polls = self.provisioning_polls
            self._save()
            logger.debug("Updated %s %s", request.resource_type, record.physical_id)
            if fault:
                raise fault.error
            return self._event(record)

    def delete(self, resource_type: str, physical_id: str) -> None:
        with self._lock:
            record = self._store.resources.get(physical_id)
            if record is None:
                return
            self.calls.append(("delete", record.logical_id))
            fault = self._next_fault("delete", record.logical_id)
            if fault and not fault.landed:
                raise fault.error
            del self._store.resources[physical_id]
            self._save()
            logger.debug("Deleted %s %s", resource_type, physical_id)
            if fault:
                raise fault.error

    def find_by_token(self, resource_type: str, request_token: str) -> ProgressEvent | None:
        with self._lock:
            record = self._by_token(resource_type, request_token)
            return self._event(record) if record is not None else None

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def resources(self, stack_name: str | None = None) -> list[ProgressEvent]:
        """Everything in the simulated cloud, optionally for one stack."""
        with self._lock:
            return [
                self._event(r)
                for r in self._store.resources.values()
                if stack_name is None or r.stack_name == stack_name
            ]

    def exists(self, physical_id: str) -> bool:
        with self._lock:
            return physical_id in self._store.resources

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _type(self, resource_type: str, logical_id: str) -> ResourceTypeDef:
        type_def = self.catalog.get(resource_type)
        if type_def is None:
            raise PermanentProviderError(f"unsupported resource type {resource_type}", resource_type, logical_id)
        return type_def

    def _by_token(self, resource_type: str, request_token: str) -> _Record | None:
        if not request_token:
            return None
        for record in self._store.resources.values():
            if record.request_token == request_token and record.resource_type == resource_type:
                return record
        return None

    def _fields(self, type_def: ResourceTypeDef, request: ResourceRequest, seed: str) -> dict[str, Any]:
        props = _Props({k: _as_text(v) for k, v in request.properties.items()})
        name_property = type_def.simulation.get("name_property")
        name = props[name_property] if name_property else ""
        if not name:
            name = f"{request.stack_name[:14]}-{request.logical_id[:8]}-{seed[:8]}"
        return {
            "hex": seed[:17],
            "short": seed[17:25],
            "name": name,
            "region": request.region,
            "account": request.account_id,
            "partition": request.partition,
            "stack": request.stack_name,
            "logical_id": request.logical_id,
            "props": props,
        }

    def _attributes(self, type_def: ResourceTypeDef, fields: dict[str, Any]) -> dict[str, Any]:
        templates = type_def.simulation.get("attributes") or {}
        return {attr: self._render(text, fields) for attr, text in templates.items()}

    @staticmethod
    def _render(text: str | None, fields: dict[str, Any]) -> str:
        if not text:
            return ""
        return str(text).format_map(fields)

    @staticmethod
    def _event(record: _Record) -> ProgressEvent:
        status = OperationStatus.IN_PROGRESS if record.pending_polls > 0 else OperationStatus.SUCCESS
        return ProgressEvent(
            status=status,
            physical_id=record.physical_id,
            properties=dict(record.properties),
            attributes=dict(record.attributes),
        )

    def _load(self) -> _CloudStore:
        if self.store_path and self.store_path.exists():
            return _CloudStore.model_validate_json(self.store_path.read_text())
        return _CloudStore()

    def _save(self) -> None:
        if not self.store_path:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.store_path.with_suffix(".tmp")
        tmp.write_text(self._store.model_dump_json(indent=2))
        tmp.replace(self.store_path)


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return scalar_to_str(value)
