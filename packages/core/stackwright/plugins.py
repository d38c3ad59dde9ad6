"""Entry-point plugins: resource providers and extra resource type catalogs.

A provider plugin registers a ``ResourceProvider`` subclass (or factory)
under ``stackwright.providers``. A catalog plugin registers a directory, or
a callable returning one, under ``stackwright.resource_types``.
"""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Any

logger = logging.getLogger(__name__)

PROVIDER_GROUP = "stackwright.providers"
RESOURCE_TYPES_GROUP = "stackwright.resource_types"


def _load_group(group: str) -> dict[str, Any]:
    """Load every entry point of ``group``; a plugin that fails to import is logged and skipped."""
    loaded: dict[str, Any] = {}
    for ep in entry_points(group=group):
        try:
            loaded[ep.name] = ep.load()
        except Exception as exc:
            logger.warning("Skipping %s plugin %r: %s", group, ep.name, exc)
            continue
        logger.debug("Loaded %s plugin %r", group, ep.name)
    return loaded


def discover_providers() -> dict[str, Any]:
    return _load_group(PROVIDER_GROUP)


def discover_resource_type_dirs() -> dict[str, Any]:
    return _load_group(RESOURCE_TYPES_GROUP)


def list_plugins() -> dict[str, list[str]]:
    """Installed plugin names per group, without importing them."""
    return {
        group: sorted(ep.name for ep in entry_points(group=group))
        for group in (PROVIDER_GROUP, RESOURCE_TYPES_GROUP)
    }
