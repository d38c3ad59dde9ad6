"""Expression evaluator — resolves intrinsic functions against one invocation.

Order is fixed: parameters -> conditions -> mappings -> resource properties
-> outputs. Later stages read earlier ones, never the reverse. References to
other resources come back as deferred ResourceRef values; their concrete
values only exist once the target resource does.
"""

from __future__ import annotations

import base64
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from stackwright.catalog import ResourceCatalog, get_catalog
from stackwright.errors import (
    CyclicDependencyError,
    ImportNotFoundError,
    SchemaError,
    UnresolvedReferenceError,
)
from stackwright.parameters import ResolvedParameters
from stackwright.template import ResourceDecl, Template
from stackwright.values import OMIT, Composite, ResourceRef, concat, find_refs, normalize, scalar_to_str

logger = logging.getLogger(__name__)

_SUB_VAR = re.compile(r"\$\{([^}]*)\}")

PSEUDO_PARAMETERS = frozenset(
    {
        "AWS::AccountId",
        "AWS::NoValue",
        "AWS::NotificationARNs",
        "AWS::Partition",
        "AWS::Region",
        "AWS::StackId",
        "AWS::StackName",
        "AWS::URLSuffix",
    }
)


@dataclass(frozen=True)
class NamingContext:
    """Stack identity plus resolved parameters, computed once per invocation.

    Every ``Ref``/``Fn::Sub`` naming convention (``${AppName}-${SDLCEnv}-...``)
    reads from this object; it is passed by value, never mutated.
    """

    stack_name: str
    parameters: ResolvedParameters
    region: str = "us-east-1"
    account_id: str = "123456789012"
    partition: str = "aws"
    url_suffix: str = "amazonaws.com"
    notification_arns: tuple[str, ...] = ()
    availability_zones: tuple[str, ...] = ()

    @property
    def stack_id(self) -> str:
        return (
            f"arn:{self.partition}:cloudformation:{self.region}:{self.account_id}:"
            f"stack/{self.stack_name}/{self.stack_name}"
        )

    def pseudo(self, name: str) -> Any:
        values = {
            "AWS::AccountId": self.account_id,
            "AWS::NoValue": OMIT,
            "AWS::NotificationARNs": list(self.notification_arns),
            "AWS::Partition": self.partition,
            "AWS::Region": self.region,
            "AWS::StackId": self.stack_id,
            "AWS::StackName": self.stack_name,
            "AWS::URLSuffix": self.url_suffix,
        }
        return values[name]

    def zones(self, region: str) -> list[str]:
        if self.availability_zones and region == self.region:
            return list(self.availability_zones)
        return [f"{region}{suffix}" for suffix in ("a", "b", "c")]


@dataclass(frozen=True)
class Included:
    resource: ResourceDecl


@dataclass(frozen=True)
class Excluded:
    logical_id: str
    condition: str


Inclusion = Union[Included, Excluded]


@dataclass(frozen=True)
class ResolvedResource:
    logical_id: str
    type: str
    properties: dict[str, Any]
    depends_on: tuple[str, ...] = ()
    references: frozenset[str] = frozenset()
    deletion_policy: str = "Delete"

    @property
    def dependencies(self) -> frozenset[str]:
        """Explicit DependsOn plus resources inferred from property references."""
        return frozenset(self.depends_on) | self.references


@dataclass(frozen=True)
class ResolvedOutput:
    name: str
    value: Any
    description: str = ""
    export_name: str | None = None


@dataclass
class ResolvedTemplate:
    """Desired state for one invocation: the input of the grapher and the planner."""

    context: NamingContext
    conditions: dict[str, bool]
    inclusions: dict[str, Inclusion]
    resources: dict[str, ResolvedResource]
    outputs: dict[str, ResolvedOutput]
    imports: dict[str, Any] = field(default_factory=dict)

    @property
    def excluded(self) -> list[str]:
        return [lid for lid, inc in self.inclusions.items() if isinstance(inc, Excluded)]


@dataclass(frozen=True)
class _Scope:
    location: str
    allow_resources: bool = True


class Evaluator:
    """Evaluates a parsed template for one set of resolved parameters."""

    def __init__(
        self,
        template: Template,
        context: NamingContext,
        catalog: ResourceCatalog | None = None,
        exports: Mapping[str, Any] | None = None,
    ):
        self.template = template
        self.context = context
        self.catalog = catalog or get_catalog()
        self.exports = exports or {}
        self._conditions: dict[str, bool] = {}
        self._inclusions: dict[str, Inclusion] = {}
        self._imports: dict[str, Any] = {}

    def evaluate(self) -> ResolvedTemplate:
        self._check_declared_names()
        self._evaluate_conditions()

        for logical_id, decl in self.template.resources.items():
            if decl.condition is not None and not self._conditions[decl.condition]:
                self._inclusions[logical_id] = Excluded(logical_id, decl.condition)
                logger.debug("Excluded %s (condition %s is false)", logical_id, decl.condition)
            else:
                self._inclusions[logical_id] = Included(decl)

        resources = {
            logical_id: self._resolve_resource(inclusion.resource)
            for logical_id, inclusion in self._inclusions.items()
            if isinstance(inclusion, Included)
        }
        outputs = {}
        for name, output in self.template.outputs.items():
            if output.condition is not None and not self._conditions[output.condition]:
                continue
            outputs[name] = self._resolve_output(name)

        return ResolvedTemplate(
            context=self.context,
            conditions=dict(self._conditions),
            inclusions=dict(self._inclusions),
            resources=resources,
            outputs=outputs,
            imports=dict(self._imports),
        )

    # ------------------------------------------------------------------
    # Static checks
    # ------------------------------------------------------------------

    def _check_declared_names(self) -> None:
        """Every name in every branch must be declared, chosen branch or not."""
        for logical_id, decl in self.template.resources.items():
            where = f"Resources.{logical_id}"
            for dep in decl.depends_on:
                if dep not in self.template.resources:
                    raise UnresolvedReferenceError(dep, f"DependsOn names undeclared resource {dep!r}", where)
            self._check_names(decl.properties, f"{where}.Properties")
        for name, output in self.template.outputs.items():
            self._check_names(output.value, f"Outputs.{name}.Value")
            if output.export is not None:
                self._check_names(output.export_name, f"Outputs.{name}.Export.Name")

    def _check_names(self, value: Any, location: str) -> None:
        if isinstance(value, list):
            for i, item in enumerate(value):
                self._check_names(item, f"{location}[{i}]")
            return
        if not isinstance(value, dict):
            return
        if len(value) == 1:
            key, arg = next(iter(value.items()))
            if key == "Ref":
                self._require_declared(arg, location)
                return
            if key == "Fn::GetAtt":
                target = arg.split(".", 1)[0] if isinstance(arg, str) else arg[0]
                if target not in self.template.resources:
                    raise UnresolvedReferenceError(target, f"Fn::GetAtt names undeclared resource {target!r}", location)
                return
            if key == "Fn::If":
                if arg[0] not in self.template.conditions:
                    raise UnresolvedReferenceError(arg[0], f"Fn::If names undeclared condition {arg[0]!r}", location)
                self._check_names(arg[1:], location)
                return
            if key == "Fn::FindInMap" and isinstance(arg[0], str) and arg[0] not in self.template.mappings:
                raise UnresolvedReferenceError(arg[0], f"Fn::FindInMap names undeclared mapping {arg[0]!r}", location)
            if key == "Fn::Sub":
                text, local = (arg, {}) if isinstance(arg, str) else (arg[0], arg[1])
                for var in _sub_variables(text):
                    if var in local:
                        continue
                    self._require_declared(var.split(".", 1)[0] if "." in var else var, location)
                self._check_names(local, location)
                return
        for k, v in value.items():
            self._check_names(v, f"{location}.{k}")

    def _require_declared(self, name: str, location: str) -> None:
        if name in PSEUDO_PARAMETERS or name in self.template.parameters or name in self.template.resources:
            return
        raise UnresolvedReferenceError(name, f"{name!r} is not a declared parameter or resource", location)

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def _evaluate_conditions(self) -> None:
        for name in self.template.conditions:
            self._condition(name, [])
        logger.debug("Conditions: %s", self._conditions)

    def _condition(self, name: str, visiting: list[str]) -> bool:
        if name in self._conditions:
            return self._conditions[name]
        if name not in self.template.conditions:
            raise UnresolvedReferenceError(name, f"Condition {name!r} is not declared")
        if name in visiting:
            raise CyclicDependencyError([*visiting[visiting.index(name) :], name])
        expr = self.template.conditions[name].expression
        result = self._condition_expr(expr, [*visiting, name], _Scope(f"Conditions.{name}", allow_resources=False))
        self._conditions[name] = result
        return result

    def _condition_expr(self, expr: Any, visiting: list[str], scope: _Scope) -> bool:
        if isinstance(expr, bool):
            return expr
        if isinstance(expr, str) and expr.lower() in ("true", "false"):
            return expr.lower() == "true"
        if isinstance(expr, dict) and len(expr) == 1:
            key, arg = next(iter(expr.items()))
            if key == "Condition":
                return self._condition(arg, visiting)
            if key == "Fn::Equals":
                left = self._eval(arg[0], scope)
                right = self._eval(arg[1], scope)
                return normalize(left) == normalize(right)
            if key == "Fn::And":
                return all(self._condition_expr(a, visiting, scope) for a in arg)
            if key == "Fn::Or":
                return any(self._condition_expr(a, visiting, scope) for a in arg)
            if key == "Fn::Not":
                return not self._condition_expr(arg[0], visiting, scope)
        raise SchemaError(f"{scope.location}: {expr!r} is not a condition expression")

    # ------------------------------------------------------------------
    # Resources and outputs
    # ------------------------------------------------------------------

    def _resolve_resource(self, decl: ResourceDecl) -> ResolvedResource:
        where = f"Resources.{decl.logical_id}"
        for dep in decl.depends_on:
            inclusion = self._inclusions[dep]
            if isinstance(inclusion, Excluded):
                raise UnresolvedReferenceError(
                    dep, f"DependsOn {dep!r}, which is excluded by condition {inclusion.condition!r}", where
                )

        properties = self._eval(decl.properties, _Scope(f"{where}.Properties"))
        type_def = self.catalog.get(decl.type)
        if type_def is not None:
            omitted = sorted(type_def.required - set(properties))
            if omitted:
                raise SchemaError(f"{where}: required property evaluated to AWS::NoValue: {', '.join(omitted)}")

        references = frozenset(find_refs(properties) - {decl.logical_id})
        return ResolvedResource(
            logical_id=decl.logical_id,
            type=decl.type,
            properties=properties,
            depends_on=tuple(decl.depends_on),
            references=references,
            deletion_policy=decl.deletion_policy,
        )

    def _resolve_output(self, name: str) -> ResolvedOutput:
        output = self.template.outputs[name]
        where = f"Outputs.{name}"
        value = self._eval(output.value, _Scope(f"{where}.Value"))
        export_name = None
        if output.export is not None:
            export_name = self._eval(output.export_name, _Scope(f"{where}.Export.Name"))
            if not isinstance(export_name, str) or not export_name:
                raise SchemaError(f"{where}: export name must evaluate to a non-empty string")
        return ResolvedOutput(name=name, value=value, description=output.description, export_name=export_name)

    # ------------------------------------------------------------------
    # Value evaluation
    # ------------------------------------------------------------------

    def _eval(self, value: Any, scope: _Scope) -> Any:
        if isinstance(value, list):
            items = [
                self._eval(item, _Scope(f"{scope.location}[{i}]", scope.allow_resources))
                for i, item in enumerate(value)
            ]
            return [item for item in items if item is not OMIT]
        if not isinstance(value, dict):
            return value
        if len(value) == 1:
            key, arg = next(iter(value.items()))
            handler = _INTRINSICS.get(key)
            if handler is not None:
                return handler(self, arg, scope)
        result = {}
        for k, v in value.items():
            evaluated = self._eval(v, _Scope(f"{scope.location}.{k}", scope.allow_resources))
            if evaluated is not OMIT:
                result[k] = evaluated
        return result

    def _ref(self, name: str, scope: _Scope) -> Any:
        if name in PSEUDO_PARAMETERS:
            return self.context.pseudo(name)
        if name in self.context.parameters:
            return self.context.parameters[name]
        if name in self.template.resources:
            return self._resource_ref(name, None, scope)
        raise UnresolvedReferenceError(name, location=scope.location)

    def _resource_ref(self, logical_id: str, attribute: str | None, scope: _Scope) -> ResourceRef:
        if not scope.allow_resources:
            raise UnresolvedReferenceError(logical_id, f"conditions cannot reference resource {logical_id!r}", scope.location)
        inclusion = self._inclusions.get(logical_id)
        if inclusion is None:
            raise UnresolvedReferenceError(logical_id, location=scope.location)
        if isinstance(inclusion, Excluded):
            raise UnresolvedReferenceError(
                logical_id,
                f"{logical_id!r} is excluded by condition {inclusion.condition!r} and cannot be referenced",
                scope.location,
            )
        if attribute is not None:
            type_def = self.catalog.get(inclusion.resource.type)
            if type_def is not None and attribute not in type_def.attributes:
                raise UnresolvedReferenceError(
                    f"{logical_id}.{attribute}",
                    f"{inclusion.resource.type} has no attribute {attribute!r}",
                    scope.location,
                )
        return ResourceRef(logical_id, attribute)

    def _fn_ref(self, arg: Any, scope: _Scope) -> Any:
        return self._ref(arg, scope)

    def _fn_get_att(self, arg: Any, scope: _Scope) -> Any:
        logical_id, attribute = arg.split(".", 1) if isinstance(arg, str) else arg
        attribute = self._eval(attribute, scope)
        if not isinstance(attribute, str):
            raise SchemaError(f"{scope.location}: Fn::GetAtt attribute must be a string")
        return self._resource_ref(logical_id, attribute, scope)

    def _fn_sub(self, arg: Any, scope: _Scope) -> Any:
        if isinstance(arg, str):
            text, local = arg, {}
        else:
            text = arg[0]
            local = {k: self._eval(v, scope) for k, v in arg[1].items()}

        parts: list[Any] = []
        pos = 0
        for match in _SUB_VAR.finditer(text):
            parts.append(text[pos : match.start()])
            pos = match.end()
            var = match.group(1)
            if var.startswith("!"):
                parts.append("${" + var[1:] + "}")
                continue
            var = var.strip()
            if var in local:
                resolved = local[var]
            elif "." in var and var.split(".", 1)[0] in self.template.resources:
                logical_id, attribute = var.split(".", 1)
                resolved = self._resource_ref(logical_id, attribute, scope)
            else:
                resolved = self._ref(var, scope)
            if isinstance(resolved, (list, dict)) or resolved is OMIT:
                raise SchemaError(f"{scope.location}: Fn::Sub variable ${{{var}}} does not resolve to a string")
            parts.append(resolved)
        parts.append(text[pos:])
        return concat(parts)

    def _fn_if(self, arg: Any, scope: _Scope) -> Any:
        condition, when_true, when_false = arg
        if condition not in self._conditions:
            raise UnresolvedReferenceError(condition, f"Condition {condition!r} is not declared", scope.location)
        return self._eval(when_true if self._conditions[condition] else when_false, scope)

    def _fn_equals(self, arg: Any, scope: _Scope) -> Any:
        raise SchemaError(f"{scope.location}: Fn::Equals is only valid inside Conditions")

    def _fn_find_in_map(self, arg: Any, scope: _Scope) -> Any:
        name, top, second = (self._eval(a, scope) for a in arg)
        for part in (name, top, second):
            if not isinstance(part, (str, int, float)) or isinstance(part, bool):
                raise SchemaError(f"{scope.location}: Fn::FindInMap keys must resolve to strings")
        name, top, second = str(name), scalar_to_str(top), scalar_to_str(second)
        mapping = self.template.mappings.get(name)
        if mapping is None:
            raise UnresolvedReferenceError(name, f"Mapping {name!r} is not declared", scope.location)
        try:
            return mapping.lookup(top, second)
        except KeyError:
            raise UnresolvedReferenceError(
                f"{name}.{top}.{second}", f"Mapping {name!r} has no entry [{top}][{second}]", scope.location
            ) from None

    def _fn_import_value(self, arg: Any, scope: _Scope) -> Any:
        export_name = self._eval(arg, _Scope(scope.location, allow_resources=False))
        if not isinstance(export_name, str):
            raise SchemaError(f"{scope.location}: Fn::ImportValue name must resolve to a string")
        if export_name not in self.exports:
            raise ImportNotFoundError(export_name, scope.location)
        value = self.exports[export_name]
        self._imports[export_name] = value
        return value

    def _fn_join(self, arg: Any, scope: _Scope) -> Any:
        delimiter = self._eval(arg[0], scope)
        items = self._eval(arg[1], scope)
        if not isinstance(delimiter, str):
            raise SchemaError(f"{scope.location}: Fn::Join delimiter must be a string")
        if not isinstance(items, list):
            raise SchemaError(f"{scope.location}: Fn::Join needs a list of values")
        parts: list[Any] = []
        for i, item in enumerate(items):
            if isinstance(item, (list, dict)):
                raise SchemaError(f"{scope.location}: Fn::Join values must be strings")
            if i:
                parts.append(delimiter)
            parts.append(item)
        return concat(parts)

    def _fn_select(self, arg: Any, scope: _Scope) -> Any:
        index = self._eval(arg[0], scope)
        items = self._eval(arg[1], scope)
        try:
            index = int(index)
        except (TypeError, ValueError):
            raise SchemaError(f"{scope.location}: Fn::Select index must be an integer") from None
        if not isinstance(items, list):
            raise SchemaError(f"{scope.location}: Fn::Select needs a list")
        if not 0 <= index < len(items):
            raise SchemaError(f"{scope.location}: Fn::Select index {index} is out of range for {len(items)} item(s)")
        return items[index]

    def _fn_split(self, arg: Any, scope: _Scope) -> Any:
        delimiter = self._eval(arg[0], scope)
        source = self._eval(arg[1], scope)
        if isinstance(source, (ResourceRef, Composite)):
            raise SchemaError(f"{scope.location}: cannot Fn::Split {source}, which is only known after apply")
        if not isinstance(delimiter, str) or not isinstance(source, str):
            raise SchemaError(f"{scope.location}: Fn::Split takes a string delimiter and a string")
        return source.split(delimiter)

    def _fn_base64(self, arg: Any, scope: _Scope) -> Any:
        value = self._eval(arg, scope)
        if isinstance(value, ResourceRef):
            return Composite((value,), encoding="base64")
        if isinstance(value, Composite):
            return Composite(value.parts, encoding="base64")
        if isinstance(value, (list, dict)):
            raise SchemaError(f"{scope.location}: Fn::Base64 takes a string")
        return base64.b64encode(scalar_to_str(value).encode()).decode()

    def _fn_get_azs(self, arg: Any, scope: _Scope) -> Any:
        region = self._eval(arg, scope) or self.context.region
        return self.context.zones(str(region))


_INTRINSICS = {
    "Ref": Evaluator._fn_ref,
    "Fn::GetAtt": Evaluator._fn_get_att,
    "Fn::Sub": Evaluator._fn_sub,
    "Fn::If": Evaluator._fn_if,
    "Fn::Equals": Evaluator._fn_equals,
    "Fn::FindInMap": Evaluator._fn_find_in_map,
    "Fn::ImportValue": Evaluator._fn_import_value,
    "Fn::Join": Evaluator._fn_join,
    "Fn::Select": Evaluator._fn_select,
    "Fn::Split": Evaluator._fn_split,
    "Fn::Base64": Evaluator._fn_base64,
    "Fn::GetAZs": Evaluator._fn_get_azs,
}


def _sub_variables(text: str) -> list[str]:
    return [m.group(1).strip() for m in _SUB_VAR.finditer(text) if not m.group(1).startswith("!")]


def evaluate(
    template: Template,
    context: NamingContext,
    catalog: ResourceCatalog | None = None,
    exports: Mapping[str, Any] | None = None,
) -> ResolvedTemplate:
    """Evaluate ``template`` for one invocation. Pure: no provider calls."""
    return Evaluator(template, context, catalog=catalog, exports=exports).evaluate()
