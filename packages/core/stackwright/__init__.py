"""Stackwright — declarative stack reconciler for CloudFormation-style templates."""

from stackwright.errors import (
    CyclicDependencyError,
    ExportConflictError,
    ExportInUseError,
    ImportNotFoundError,
    ParameterValueError,
    PermanentProviderError,
    ProviderError,
    SchemaError,
    StabilizationTimeout,
    StackwrightError,
    TransientProviderError,
    UnresolvedReferenceError,
    UnsafeReplacementError,
)
from stackwright.template import Condition, Mapping, Output, Parameter, ResourceDecl, Template

__version__ = "0.1.0"

__all__ = [
    "ApplyReport",
    "Condition",
    "CyclicDependencyError",
    "DependencyGraph",
    "ExportConflictError",
    "ExportInUseError",
    "ImportNotFoundError",
    "Mapping",
    "Output",
    "Parameter",
    "ParameterValueError",
    "PermanentProviderError",
    "Plan",
    "ProviderError",
    "Reconciler",
    "ReconcilerConfig",
    "ResourceDecl",
    "SchemaError",
    "StabilizationTimeout",
    "StackwrightError",
    "Template",
    "TransientProviderError",
    "UnresolvedReferenceError",
    "UnsafeReplacementError",
    "parse_file",
]


def __getattr__(name: str):
    # Lazy imports keep `import stackwright` cheap for the CLI's --version path
    if name == "Reconciler":
        from stackwright.reconciler import Reconciler

        return Reconciler
    if name == "ReconcilerConfig":
        from stackwright.config import ReconcilerConfig

        return ReconcilerConfig
    if name == "Plan":
        from stackwright.planner import Plan

        return Plan
    if name == "ApplyReport":
        from stackwright.executor import ApplyReport

        return ApplyReport
    if name == "DependencyGraph":
        from stackwright.graph import DependencyGraph

        return DependencyGraph
    if name == "parse_file":
        from stackwright.parser import parse_file

        return parse_file
    raise AttributeError(f"module 'stackwright' has no attribute {name!r}")
