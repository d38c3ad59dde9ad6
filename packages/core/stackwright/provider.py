"""Provider API — the CRUD contract every resource backend implements.

The reconciler never talks to a cloud directly. It hands a ResourceRequest to
a ResourceProvider and reads back a ProgressEvent. Providers signal retryable
problems with TransientProviderError and everything else with
PermanentProviderError.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class OperationStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class ResourceRequest:
    """Everything a provider needs to create or update one resource."""

    logical_id: str
    resource_type: str
    properties: dict[str, Any]
    stack_name: str
    request_token: str
    region: str = "us-east-1"
    account_id: str = "123456789012"
    partition: str = "aws"
    physical_id: str | None = None
    previous_properties: dict[str, Any] | None = None


@dataclass
class ProgressEvent:
    """Provider's view of a resource after a call.

    ``status`` is IN_PROGRESS while an async resource is still provisioning;
    the executor polls ``read`` until it reports SUCCESS.
    """

    status: OperationStatus
    physical_id: str
    properties: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    message: str = ""

    @property
    def stable(self) -> bool:
        return self.status == OperationStatus.SUCCESS


class ResourceProvider(ABC):
    """ABC for resource providers. Register implementations under the
    ``stackwright.providers`` entry point group."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name (e.g., 'local')."""
        ...

    @abstractmethod
    def create(self, request: ResourceRequest) -> ProgressEvent:
        """Start creating a resource. Must be idempotent on ``request.request_token``."""
        ...

    @abstractmethod
    def read(self, resource_type: str, physical_id: str) -> ProgressEvent | None:
        """Current view of a resource, or None if it does not exist."""
        ...

    @abstractmethod
    def update(self, request: ResourceRequest) -> ProgressEvent:
        """Apply ``request.properties`` in place to ``request.physical_id``."""
        ...

    @abstractmethod
    def delete(self, resource_type: str, physical_id: str) -> None:
        """Remove a resource. Deleting a resource that is already gone is not an error."""
        ...

    @abstractmethod
    def find_by_token(self, resource_type: str, request_token: str) -> ProgressEvent | None:
        """Look up a resource created with ``request_token``; None if no create landed."""
        ...


def get_provider(name: str, **options: Any) -> ResourceProvider:
    """Factory: build a provider by name.

    ``local`` is built in; anything else is looked up in the
    ``stackwright.providers`` entry point group and called with ``options``.
    """
    if name == "local":
        from stackwright.providers.local import LocalProvider

        return LocalProvider(**options)

    from stackwright.plugins import discover_providers

    factories = discover_providers()
    factory = factories.get(name)
    if factory is None:
        available = ", ".join(sorted({"local", *factories})) or "local"
        raise ValueError(f"Unknown provider {name!r}. Available: {available}")
    provider = factory(**options)
    if not isinstance(provider, ResourceProvider):
        raise TypeError(f"Provider plugin {name!r} did not return a ResourceProvider")
    logger.debug("Using provider plugin %s", name)
    return provider


__all__ = [
    "OperationStatus",
    "ProgressEvent",
    "ResourceProvider",
    "ResourceRequest",
    "get_provider",
]
