"""Template parser — validates a loaded document and builds a Template."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from stackwright.catalog import ResourceCatalog, get_catalog
from stackwright.errors import ParameterValueError, SchemaError
from stackwright.loader import load_file, loads
from stackwright.parameters import check_value, coerce, is_known_type
from stackwright.template import Condition, Mapping, Output, Parameter, ResourceDecl, Template

logger = logging.getLogger(__name__)

_SECTIONS = {
    "AWSTemplateFormatVersion",
    "Description",
    "Metadata",
    "Parameters",
    "Conditions",
    "Mappings",
    "Resources",
    "Outputs",
}

# intrinsic -> (min, max) list arity; None means the argument is not a list
_ARITY: dict[str, tuple[int, int] | None] = {
    "Fn::If": (3, 3),
    "Fn::Equals": (2, 2),
    "Fn::And": (2, 10),
    "Fn::Or": (2, 10),
    "Fn::Not": (1, 1),
    "Fn::FindInMap": (3, 3),
    "Fn::GetAtt": (2, 2),
    "Fn::Join": (2, 2),
    "Fn::Select": (2, 2),
    "Fn::Split": (2, 2),
    "Fn::Sub": None,
    "Fn::ImportValue": None,
    "Fn::Base64": None,
    "Fn::GetAZs": None,
}


def parse_file(path: str | Path, catalog: ResourceCatalog | None = None) -> Template:
    """Load and parse a template file (YAML or JSON)."""
    return parse_document(load_file(path), catalog)


def parse_text(text: str, catalog: ResourceCatalog | None = None) -> Template:
    return parse_document(loads(text), catalog)


def parse_document(data: Any, catalog: ResourceCatalog | None = None) -> Template:
    """Build a Template from a loaded document.

    Raises SchemaError for unknown sections or resource types, missing
    required properties, malformed intrinsics, and parameters whose declared
    constraints contradict each other.
    """
    catalog = catalog or get_catalog()
    if not isinstance(data, dict):
        raise SchemaError("Template must be a mapping")

    unknown = sorted(set(data) - _SECTIONS)
    if unknown:
        raise SchemaError(f"Unsupported template section(s): {', '.join(unknown)}")

    for section in ("Metadata", "Parameters", "Conditions", "Mappings", "Resources", "Outputs"):
        if section in data and not isinstance(data[section] or {}, dict):
            raise SchemaError(f"Section {section} must be a mapping")

    if not data.get("Resources"):
        raise SchemaError("Template declares no Resources")

    parameters = {name: _parse_parameter(name, body) for name, body in (data.get("Parameters") or {}).items()}
    conditions = {
        name: Condition(name=name, expression=_checked(expr, f"Conditions.{name}", in_condition=True))
        for name, expr in (data.get("Conditions") or {}).items()
    }
    mappings = {name: _parse_mapping(name, body) for name, body in (data.get("Mappings") or {}).items()}
    resources = {
        logical_id: _parse_resource(logical_id, body, catalog, conditions)
        for logical_id, body in (data.get("Resources") or {}).items()
    }
    outputs = {name: _parse_output(name, body, conditions) for name, body in (data.get("Outputs") or {}).items()}

    clashes = sorted(set(parameters) & set(resources))
    if clashes:
        raise SchemaError(f"Names used for both a parameter and a resource: {', '.join(clashes)}")

    template = Template(
        format_version=str(data.get("AWSTemplateFormatVersion", "2010-09-09")),
        description=str(data.get("Description") or "").strip(),
        metadata=data.get("Metadata") or {},
        parameters=parameters,
        conditions=conditions,
        mappings=mappings,
        resources=resources,
        outputs=outputs,
    )
    logger.debug(
        "Parsed template: %d parameters, %d conditions, %d mappings, %d resources, %d outputs",
        len(parameters),
        len(conditions),
        len(mappings),
        len(resources),
        len(outputs),
    )
    return template


def _schema_error(where: str, e: ValidationError) -> SchemaError:
    problems = "; ".join(f"{'.'.join(str(p) for p in err['loc']) or where}: {err['msg']}" for err in e.errors())
    return SchemaError(f"{where}: {problems}")


def _parse_parameter(name: str, body: Any) -> Parameter:
    if not isinstance(body, dict):
        raise SchemaError(f"Parameters.{name} must be a mapping")
    try:
        param = Parameter(name=name, **body)
    except (ValidationError, TypeError) as e:
        if isinstance(e, ValidationError):
            raise _schema_error(f"Parameters.{name}", e) from e
        raise SchemaError(f"Parameters.{name}: {e}") from e

    if not is_known_type(param.type):
        raise SchemaError(f"Parameters.{name}: unknown parameter type {param.type!r}")
    _check_constraints(param)
    return param


def _check_constraints(param: Parameter) -> None:
    """Reject constraint sets that no value (or not the declared default) can satisfy."""
    where = f"Parameters.{param.name}"
    if param.allowed_pattern is not None:
        try:
            re.compile(param.allowed_pattern)
        except re.error as e:
            raise SchemaError(f"{where}: AllowedPattern is not a valid regular expression: {e}") from e
    if param.min_length is not None and param.max_length is not None and param.min_length > param.max_length:
        raise SchemaError(f"{where}: MinLength {param.min_length} exceeds MaxLength {param.max_length}")
    if param.min_value is not None and param.max_value is not None and param.min_value > param.max_value:
        raise SchemaError(f"{where}: MinValue {param.min_value:g} exceeds MaxValue {param.max_value:g}")

    if param.allowed_values is not None:
        if not param.allowed_values:
            raise SchemaError(f"{where}: AllowedValues is empty")
        # each allowed value must itself pass the remaining constraints
        unconstrained = param.model_copy(update={"allowed_values": None})
        for allowed in param.allowed_values:
            try:
                check_value(unconstrained, coerce(unconstrained, allowed))
            except ParameterValueError as e:
                raise SchemaError(f"{where}: allowed value {allowed!r} can never be accepted: {e}") from e

    if param.has_default:
        try:
            check_value(param, coerce(param, param.default))
        except ParameterValueError as e:
            raise SchemaError(f"{where}: default {param.default!r} violates its own constraints: {e}") from e


def _parse_mapping(name: str, body: Any) -> Mapping:
    if not isinstance(body, dict) or not all(isinstance(v, dict) for v in body.values()):
        raise SchemaError(f"Mappings.{name} must be a two-level mapping")
    entries = {str(top): {str(k): v for k, v in second.items()} for top, second in body.items()}
    return Mapping(name=name, entries=entries)


def _parse_resource(
    logical_id: str, body: Any, catalog: ResourceCatalog, conditions: dict[str, Condition]
) -> ResourceDecl:
    where = f"Resources.{logical_id}"
    if not isinstance(body, dict):
        raise SchemaError(f"{where} must be a mapping")
    try:
        resource = ResourceDecl(logical_id=logical_id, **body)
    except ValidationError as e:
        raise _schema_error(where, e) from e
    except TypeError as e:
        raise SchemaError(f"{where}: {e}") from e

    type_def = catalog.get(resource.type)
    if type_def is None:
        raise SchemaError(f"{where}: unknown resource type {resource.type!r}")

    missing = sorted(type_def.required - set(resource.properties))
    if missing:
        raise SchemaError(f"{where}: missing required propert{'y' if len(missing) == 1 else 'ies'} {', '.join(missing)}")

    if resource.condition is not None and resource.condition not in conditions:
        raise SchemaError(f"{where}: Condition {resource.condition!r} is not declared")

    _checked(resource.properties, f"{where}.Properties")
    return resource


def _parse_output(name: str, body: Any, conditions: dict[str, Condition]) -> Output:
    where = f"Outputs.{name}"
    if not isinstance(body, dict):
        raise SchemaError(f"{where} must be a mapping")
    try:
        output = Output(name=name, **body)
    except ValidationError as e:
        raise _schema_error(where, e) from e
    except TypeError as e:
        raise SchemaError(f"{where}: {e}") from e
    if output.export is not None and "Name" not in output.export:
        raise SchemaError(f"{where}: Export needs a Name")
    if output.condition is not None and output.condition not in conditions:
        raise SchemaError(f"{where}: Condition {output.condition!r} is not declared")
    _checked(output.value, f"{where}.Value")
    if output.export is not None:
        _checked(output.export_name, f"{where}.Export.Name")
    return output


def _checked(value: Any, location: str, in_condition: bool = False) -> Any:
    """Walk an expression tree and reject malformed intrinsic functions."""
    if isinstance(value, list):
        for i, item in enumerate(value):
            _checked(item, f"{location}[{i}]", in_condition)
        return value
    if not isinstance(value, dict):
        return value

    if len(value) == 1:
        key, arg = next(iter(value.items()))
        if key == "Ref":
            if not isinstance(arg, str):
                raise SchemaError(f"{location}: Ref takes a name, got {arg!r}")
            return value
        if key == "Condition" and in_condition:
            if not isinstance(arg, str):
                raise SchemaError(f"{location}: Condition takes a condition name, got {arg!r}")
            return value
        if key.startswith("Fn::"):
            if key not in _ARITY:
                raise SchemaError(f"{location}: unsupported intrinsic function {key}")
            arity = _ARITY[key]
            if key == "Fn::GetAtt" and isinstance(arg, str):
                arg = arg.split(".", 1)
            if arity is not None:
                low, high = arity
                if not isinstance(arg, list) or not low <= len(arg) <= high:
                    expected = f"{low}" if low == high else f"{low}-{high}"
                    raise SchemaError(f"{location}: {key} takes a list of {expected} arguments")
            if key == "Fn::Sub" and isinstance(arg, list) and (len(arg) != 2 or not isinstance(arg[1], dict)):
                raise SchemaError(f"{location}: Fn::Sub list form is [template, {{variables}}]")
            _checked(arg, f"{location}.{key}", in_condition or key in ("Fn::And", "Fn::Or", "Fn::Not"))
            return value

    for k, v in value.items():
        _checked(v, f"{location}.{k}", in_condition)
    return value
