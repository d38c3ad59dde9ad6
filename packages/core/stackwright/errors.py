"""Error taxonomy for the reconciler.

Everything raised before execution (parse, parameter, evaluate, graph, plan)
leaves no side effects. Only ProviderError and its subtypes surface while a
plan is being applied.
"""

from __future__ import annotations


class StackwrightError(Exception):
    """Base class for all reconciler errors."""


class SchemaError(StackwrightError):
    """Malformed template: unknown type, missing property, inconsistent constraints."""


class ParameterValueError(StackwrightError):
    """A supplied parameter value violates its declared type or constraints."""

    def __init__(self, parameter: str, message: str):
        self.parameter = parameter
        super().__init__(f"Parameter {parameter!r}: {message}")


class UnresolvedReferenceError(StackwrightError):
    """An expression names a parameter, resource, condition or attribute that is not available."""

    def __init__(self, name: str, message: str | None = None, location: str = ""):
        self.name = name
        self.location = location
        text = message or f"Unresolved reference {name!r}"
        if location:
            text = f"{location}: {text}"
        super().__init__(text)


class ImportNotFoundError(StackwrightError):
    """Fn::ImportValue names an export no other stack provides."""

    def __init__(self, export_name: str, location: str = ""):
        self.export_name = export_name
        text = f"No stack exports {export_name!r}"
        if location:
            text = f"{location}: {text}"
        super().__init__(text)


class CyclicDependencyError(StackwrightError):
    """The dependency graph (or the condition graph) has no topological order."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Circular dependency: " + " -> ".join(cycle))


class UnsafeReplacementError(StackwrightError):
    """Replacing a resource would leave dependents that cannot tolerate its absence."""

    def __init__(self, logical_id: str, dependents: list[str], properties: list[str]):
        self.logical_id = logical_id
        self.dependents = dependents
        self.properties = properties
        super().__init__(
            f"Replacing {logical_id!r} (changed: {', '.join(properties) or 'type'}) "
            f"would break dependents that cannot tolerate its absence: {', '.join(dependents)}"
        )


class ExportConflictError(StackwrightError):
    """Two stacks export the same name."""

    def __init__(self, export_name: str, owner: str):
        self.export_name = export_name
        self.owner = owner
        super().__init__(f"Export {export_name!r} is already exported by stack {owner!r}")


class ExportInUseError(StackwrightError):
    """An export that another stack imports would be removed or changed."""

    def __init__(self, export_name: str, importers: list[str]):
        self.export_name = export_name
        self.importers = importers
        super().__init__(f"Export {export_name!r} is still imported by: {', '.join(importers)}")


class ProviderError(StackwrightError):
    """A provider API call failed."""

    def __init__(self, message: str, resource_type: str = "", logical_id: str = ""):
        self.resource_type = resource_type
        self.logical_id = logical_id
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Throttling, timeouts and similar failures that are worth retrying."""


class PermanentProviderError(ProviderError):
    """Failures that abort the plan."""


class StabilizationTimeout(PermanentProviderError):
    """A resource never reached a stable state within the configured timeout."""
