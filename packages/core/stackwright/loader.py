"""Template document loading — JSON or YAML with CloudFormation short-form tags."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from stackwright.errors import SchemaError

# short tag -> long-form intrinsic key
_SHORT_FORMS: dict[str, str] = {
    "Ref": "Ref",
    "Condition": "Condition",
    "Sub": "Fn::Sub",
    "GetAtt": "Fn::GetAtt",
    "If": "Fn::If",
    "Equals": "Fn::Equals",
    "And": "Fn::And",
    "Or": "Fn::Or",
    "Not": "Fn::Not",
    "FindInMap": "Fn::FindInMap",
    "ImportValue": "Fn::ImportValue",
    "Join": "Fn::Join",
    "Select": "Fn::Select",
    "Split": "Fn::Split",
    "Base64": "Fn::Base64",
    "GetAZs": "Fn::GetAZs",
}

_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


class TemplateLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!Ref``-style tags and keeps dates as strings.

    ``AWSTemplateFormatVersion: 2010-09-09`` and policy ``Version: 2012-10-17``
    must stay strings, so the timestamp resolver is dropped.
    """


TemplateLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _make_constructor(long_form: str):
    def construct(loader: yaml.SafeLoader, node: yaml.Node) -> dict[str, Any]:
        if isinstance(node, yaml.ScalarNode):
            value: Any = loader.construct_scalar(node)
            if long_form == "Fn::GetAtt":
                logical_id, _, attribute = str(value).partition(".")
                value = [logical_id, attribute]
        elif isinstance(node, yaml.SequenceNode):
            value = loader.construct_sequence(node, deep=True)
        else:
            value = loader.construct_mapping(node, deep=True)
        return {long_form: value}

    return construct


for _short, _long in _SHORT_FORMS.items():
    TemplateLoader.add_constructor(f"!{_short}", _make_constructor(_long))


def loads(text: str, fmt: str = "auto") -> Any:
    """Parse a template or parameter document from text."""
    if fmt == "auto":
        fmt = "json" if text.lstrip().startswith(("{", "[")) else "yaml"
    try:
        data = json.loads(text) if fmt == "json" else yaml.load(text, Loader=TemplateLoader)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid JSON: {e}") from e
    except yaml.YAMLError as e:
        raise SchemaError(f"Invalid YAML: {e}") from e
    if data is None:
        return {}
    return data


def load_file(path: str | Path) -> Any:
    """Load a JSON (``.json``) or YAML (anything else) document from disk."""
    p = Path(path)
    text = p.read_text()
    return loads(text, fmt="json" if p.suffix == ".json" else "yaml")
