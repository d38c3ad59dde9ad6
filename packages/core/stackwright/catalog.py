"""Resource type catalog — loads provider-declared resource type contracts from YAML.

One file per provider namespace lives in data/resource_types/*.yaml. Each type
declares its required properties, the properties whose change forces
replacement, the attributes Fn::GetAtt may read, and the scheduling hints the
planner and executor honour.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

_CATALOG_DIR = Path(__file__).parent / "data" / "resource_types"


class ResourceTypeDef:
    """Contract for a single resource type."""

    __slots__ = (
        "type_name",
        "service",
        "description",
        "required",
        "replacement",
        "attributes",
        "tolerates_transient_absence",
        "async_provisioning",
        "simulation",
    )

    def __init__(
        self,
        type_name: str,
        service: str,
        description: str,
        required: frozenset[str],
        replacement: frozenset[str],
        attributes: frozenset[str],
        tolerates_transient_absence: bool,
        async_provisioning: bool,
        simulation: dict[str, Any],
    ):
        self.type_name = type_name
        self.service = service
        self.description = description
        self.required = required
        self.replacement = replacement
        self.attributes = attributes
        self.tolerates_transient_absence = tolerates_transient_absence
        self.async_provisioning = async_provisioning
        self.simulation = simulation

    def requires_replacement(self, prop: str) -> bool:
        return prop in self.replacement

    def to_dict(self) -> dict[str, Any]:
        return {
            "type_name": self.type_name,
            "service": self.service,
            "description": self.description,
            "required": sorted(self.required),
            "replacement": sorted(self.replacement),
            "attributes": sorted(self.attributes),
            "tolerates_transient_absence": self.tolerates_transient_absence,
            "async_provisioning": self.async_provisioning,
        }


class ResourceCatalog:
    """Catalog of resource types, keyed by type name (``AWS::EC2::SecurityGroup``).

    Loaded once from disk; read-only afterwards.
    """

    def __init__(self, catalog_dir: str | Path | None = None, extra_dirs: list[str | Path] | None = None):
        self._dirs = [Path(catalog_dir) if catalog_dir else _CATALOG_DIR]
        self._dirs.extend(Path(d) for d in extra_dirs or [])
        self._types: dict[str, ResourceTypeDef] = {}
        for directory in self._dirs:
            self._load(directory)

    def _load(self, directory: Path) -> None:
        for yaml_path in sorted(directory.glob("*.yaml")):
            data = yaml.safe_load(yaml_path.read_text()) or {}
            service = data.get("service", yaml_path.stem)
            for type_name, body in (data.get("types") or {}).items():
                body = body or {}
                self._types[type_name] = ResourceTypeDef(
                    type_name=type_name,
                    service=service,
                    description=body.get("description", ""),
                    required=frozenset(body.get("required") or []),
                    replacement=frozenset(body.get("replacement") or []),
                    attributes=frozenset(body.get("attributes") or []),
                    tolerates_transient_absence=bool(body.get("tolerates_transient_absence", False)),
                    async_provisioning=bool(body.get("async_provisioning", False)),
                    simulation=body.get("simulation") or {},
                )

    def get(self, type_name: str) -> ResourceTypeDef | None:
        """Return the type definition or None if the type is unknown."""
        return self._types.get(type_name)

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._types

    def list_types(self, service: str | None = None) -> list[ResourceTypeDef]:
        """All known types, optionally restricted to one service namespace."""
        types = sorted(self._types.values(), key=lambda t: t.type_name)
        if service:
            return [t for t in types if t.service == service]
        return types


# Module-level singleton, loaded lazily on first access
_catalog: ResourceCatalog | None = None


def get_catalog() -> ResourceCatalog:
    """Return the shared catalog singleton, loading from disk if needed."""
    global _catalog
    if _catalog is None:
        _catalog = ResourceCatalog(extra_dirs=_plugin_dirs())
    return _catalog


def _plugin_dirs() -> list[Path]:
    """Catalog directories contributed by ``stackwright.resource_types`` plugins."""
    from stackwright.plugins import discover_resource_type_dirs

    dirs = []
    for entry in discover_resource_type_dirs().values():
        path = Path(entry() if callable(entry) else entry)
        if path.is_dir():
            dirs.append(path)
    return dirs
