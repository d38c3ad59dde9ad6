"""Value types produced by the expression evaluator.

A property evaluates to plain JSON-like data, the OMIT sentinel (from
``Ref: AWS::NoValue``), or a deferred value that points at another resource
whose identity or attributes only exist once that resource does.
"""

from __future__ import annotations

import base64
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class _Omit:
    __slots__ = ()

    def __repr__(self) -> str:
        return "OMIT"

    def __bool__(self) -> bool:
        return False


OMIT = _Omit()


@dataclass(frozen=True)
class ResourceRef:
    """Identity (``attribute=None``) or attribute of another resource."""

    logical_id: str
    attribute: str | None = None

    def __str__(self) -> str:
        if self.attribute:
            return f"{self.logical_id}.{self.attribute}"
        return self.logical_id


@dataclass(frozen=True)
class Composite:
    """String built from literals and resource references (Fn::Sub, Fn::Join)."""

    parts: tuple[str | ResourceRef, ...]
    encoding: str | None = None

    def __str__(self) -> str:
        text = "".join(p if isinstance(p, str) else "${" + str(p) + "}" for p in self.parts)
        if self.encoding:
            return f"{self.encoding}({text})"
        return text


def concat(parts: list[Any]) -> str | Composite:
    """Join string-ish parts; stays a plain string unless a reference is involved."""
    merged: list[str | ResourceRef] = []
    for part in parts:
        if isinstance(part, Composite):
            if part.encoding:
                raise ValueError("Cannot embed an encoded value in a string")
            pieces: tuple[Any, ...] = part.parts
        else:
            pieces = (part,)
        for piece in pieces:
            if isinstance(piece, ResourceRef):
                merged.append(piece)
                continue
            text = scalar_to_str(piece)
            if merged and isinstance(merged[-1], str):
                merged[-1] += text
            else:
                merged.append(text)
    if not any(isinstance(p, ResourceRef) for p in merged):
        return "".join(p for p in merged if isinstance(p, str))
    return Composite(tuple(merged))


def scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if value is None:
        return ""
    return str(value)


def is_deferred(value: Any) -> bool:
    if isinstance(value, (ResourceRef, Composite)):
        return True
    if isinstance(value, dict):
        return any(is_deferred(v) for v in value.values())
    if isinstance(value, list):
        return any(is_deferred(v) for v in value)
    return False


def find_refs(value: Any) -> set[str]:
    """Logical ids of every resource referenced anywhere inside ``value``."""
    if isinstance(value, ResourceRef):
        return {value.logical_id}
    if isinstance(value, Composite):
        return {p.logical_id for p in value.parts if isinstance(p, ResourceRef)}
    found: set[str] = set()
    if isinstance(value, dict):
        for v in value.values():
            found |= find_refs(v)
    elif isinstance(value, list):
        for v in value:
            found |= find_refs(v)
    return found


def materialize(value: Any, lookup: Callable[[ResourceRef], Any]) -> Any:
    """Replace references with concrete values where ``lookup`` knows them.

    ``lookup`` raises KeyError for references that are not known yet; those
    stay deferred in the result.
    """
    if isinstance(value, ResourceRef):
        try:
            return lookup(value)
        except KeyError:
            return value
    if isinstance(value, Composite):
        parts = [materialize(p, lookup) if isinstance(p, ResourceRef) else p for p in value.parts]
        joined = concat(parts)
        if isinstance(joined, Composite):
            return Composite(joined.parts, value.encoding)
        if value.encoding == "base64":
            return base64.b64encode(joined.encode()).decode()
        return joined
    if isinstance(value, dict):
        return {k: materialize(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [materialize(v, lookup) for v in value]
    return value


def normalize(value: Any) -> Any:
    """Canonical form used when comparing desired and observed properties."""
    if isinstance(value, dict):
        return {k: normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize(v) for v in value]
    if isinstance(value, (ResourceRef, Composite)):
        return value
    return scalar_to_str(value)


def to_display(value: Any) -> Any:
    """JSON-safe rendering; deferred values show as ``(known after apply: X.Attr)``."""
    if isinstance(value, (ResourceRef, Composite)):
        return f"(known after apply: {value})"
    if isinstance(value, dict):
        return {k: to_display(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_display(v) for v in value]
    return value
