"""Parameter resolution — typed, constraint-checked invocation inputs."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from typing import Any

from stackwright.errors import ParameterValueError
from stackwright.template import Parameter, Template
from stackwright.values import scalar_to_str

logger = logging.getLogger(__name__)

_SCALAR_TYPES = {"String", "Number"}
_LIST_TYPES = {"List<Number>", "CommaDelimitedList"}
_NATIVE_ID = re.compile(r"^AWS::[A-Za-z0-9]+::[A-Za-z0-9]+(::[A-Za-z0-9]+)*$")
_NATIVE_LIST = re.compile(r"^List<AWS::[A-Za-z0-9]+::[A-Za-z0-9]+(::[A-Za-z0-9]+)*>$")


def is_known_type(type_name: str) -> bool:
    return (
        type_name in _SCALAR_TYPES
        or type_name in _LIST_TYPES
        or bool(_NATIVE_ID.match(type_name))
        or bool(_NATIVE_LIST.match(type_name))
    )


def is_list_type(type_name: str) -> bool:
    return type_name in _LIST_TYPES or bool(_NATIVE_LIST.match(type_name))


def is_numeric_type(type_name: str) -> bool:
    return type_name in ("Number", "List<Number>")


class ResolvedParameters(Mapping[str, Any]):
    """Read-only parameter values for one invocation.

    Scalars are strings (as ``Ref`` returns them); list types are lists of strings.
    """

    def __init__(self, values: dict[str, Any], no_echo: frozenset[str] = frozenset()):
        self._values = dict(values)
        self._no_echo = no_echo

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def masked(self) -> dict[str, Any]:
        """Values safe to print: NoEcho parameters are replaced by asterisks."""
        return {k: ("****" if k in self._no_echo else v) for k, v in self._values.items()}


def coerce(param: Parameter, raw: Any) -> Any:
    """Convert a raw input into the canonical form for the parameter's type."""
    if is_list_type(param.type):
        if isinstance(raw, str):
            items = [item.strip() for item in raw.split(",")] if raw else []
        elif isinstance(raw, list):
            items = [scalar_to_str(item) for item in raw]
        else:
            items = [scalar_to_str(raw)]
        if is_numeric_type(param.type):
            for item in items:
                _as_number(param, item)
        return items

    if isinstance(raw, (list, dict)):
        raise ParameterValueError(param.name, f"expected a single {param.type} value, got {type(raw).__name__}")
    value = scalar_to_str(raw)
    if param.type == "Number":
        _as_number(param, value)
    return value


def _as_number(param: Parameter, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ParameterValueError(param.name, f"{value!r} is not a number") from None


def check_value(param: Parameter, value: Any) -> None:
    """Raise ParameterValueError if a coerced value violates the parameter's constraints."""
    items = value if isinstance(value, list) else [value]
    hint = f" ({param.constraint_description})" if param.constraint_description else ""

    if param.allowed_values is not None:
        allowed = [scalar_to_str(v) for v in param.allowed_values]
        for item in items:
            if item not in allowed:
                raise ParameterValueError(param.name, f"{item!r} is not one of {allowed}{hint}")

    if param.type == "String":
        if param.allowed_pattern is not None and not re.fullmatch(param.allowed_pattern, value):
            raise ParameterValueError(
                param.name, f"{value!r} does not match pattern {param.allowed_pattern!r}{hint}"
            )
        if param.min_length is not None and len(value) < param.min_length:
            raise ParameterValueError(param.name, f"length {len(value)} is below MinLength {param.min_length}{hint}")
        if param.max_length is not None and len(value) > param.max_length:
            raise ParameterValueError(param.name, f"length {len(value)} exceeds MaxLength {param.max_length}{hint}")

    if is_numeric_type(param.type):
        for item in items:
            number = _as_number(param, item)
            if param.min_value is not None and number < param.min_value:
                raise ParameterValueError(param.name, f"{item} is below MinValue {param.min_value:g}{hint}")
            if param.max_value is not None and number > param.max_value:
                raise ParameterValueError(param.name, f"{item} exceeds MaxValue {param.max_value:g}{hint}")


def resolve_parameters(template: Template, inputs: Mapping[str, Any] | None = None) -> ResolvedParameters:
    """Merge invocation inputs with defaults and validate every parameter.

    Raises ParameterValueError for undeclared inputs, missing values and
    constraint violations; nothing is evaluated until this succeeds.
    """
    inputs = dict(inputs or {})
    undeclared = sorted(set(inputs) - set(template.parameters))
    if undeclared:
        raise ParameterValueError(undeclared[0], "is not declared in the template")

    values: dict[str, Any] = {}
    for name, param in template.parameters.items():
        if name in inputs:
            raw = inputs[name]
        elif param.has_default:
            raw = param.default
        else:
            raise ParameterValueError(name, "no value supplied and no default declared")
        value = coerce(param, raw)
        check_value(param, value)
        values[name] = value

    no_echo = frozenset(name for name, p in template.parameters.items() if p.no_echo)
    resolved = ResolvedParameters(values, no_echo)
    logger.debug("Resolved parameters: %s", resolved.masked())
    return resolved


def parse_parameter_document(data: Any) -> dict[str, Any]:
    """Accept ``{Key: Value}`` or the ``[{ParameterKey, ParameterValue}]`` list form."""
    if isinstance(data, dict):
        return dict(data)
    if isinstance(data, list):
        result: dict[str, Any] = {}
        for entry in data:
            if not isinstance(entry, dict) or "ParameterKey" not in entry:
                raise ValueError("Parameter list entries need ParameterKey and ParameterValue")
            result[entry["ParameterKey"]] = entry.get("ParameterValue", "")
        return result
    raise ValueError("Parameter file must be a mapping or a list of ParameterKey/ParameterValue entries")


def parse_assignments(assignments: list[str]) -> dict[str, str]:
    """Parse ``Key=Value`` strings from the command line."""
    result: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid parameter {item!r}; expected Key=Value")
        result[key.strip()] = value
    return result
