"""Tests for parameter resolution and constraint checking."""

from __future__ import annotations

import pytest
from stackwright.errors import ParameterValueError
from stackwright.parameters import (
    coerce,
    is_known_type,
    parse_assignments,
    parse_parameter_document,
    resolve_parameters,
)
from stackwright.parser import parse_text
from stackwright.template import Parameter


class TestResolveParameters:
    def test_defaults_and_inputs(self, lb_template, lb_params):
        resolved = resolve_parameters(lb_template, lb_params)
        assert resolved["AppName"] == "shop"
        assert resolved["AppTier"] == "web"
        assert resolved["StackNum"] == "1"
        assert resolved["ShouldAddAlbBucketLogsPolicy"] == "true"
        assert resolved["LoadBalancerSubnets"] == ["subnet-aaa", "subnet-bbb"]

    def test_missing_value_without_default(self, lb_template, lb_params):
        del lb_params["AppName"]
        with pytest.raises(ParameterValueError, match="AppName.*no value supplied"):
            resolve_parameters(lb_template, lb_params)

    def test_undeclared_input(self, lb_template, lb_params):
        with pytest.raises(ParameterValueError, match="not declared"):
            resolve_parameters(lb_template, {**lb_params, "Bogus": "x"})

    def test_pattern_violation(self, lb_template, lb_params):
        with pytest.raises(ParameterValueError, match="AppName.*does not match pattern"):
            resolve_parameters(lb_template, {**lb_params, "AppName": "Shop!"})

    def test_allowed_values_with_constraint_description(self, lb_template, lb_params):
        with pytest.raises(ParameterValueError, match="supported load balancer scheme"):
            resolve_parameters(lb_template, {**lb_params, "AlbScheme": "public"})

    def test_empty_prefix_allowed(self, lb_template, lb_params):
        resolved = resolve_parameters(lb_template, {**lb_params, "AlbAccessLogsPrefix": ""})
        assert resolved["AlbAccessLogsPrefix"] == ""

    def test_prefix_must_end_with_slash(self, lb_template, lb_params):
        with pytest.raises(ParameterValueError, match="AlbAccessLogsPrefix"):
            resolve_parameters(lb_template, {**lb_params, "AlbAccessLogsPrefix": "logs"})

    def test_number_rejects_text(self, lb_template, lb_params):
        with pytest.raises(ParameterValueError, match="not a number"):
            resolve_parameters(lb_template, {**lb_params, "AppPort": "eighty"})

    def test_number_from_int_input(self, lb_template, lb_params):
        resolved = resolve_parameters(lb_template, {**lb_params, "AppPort": 9000})
        assert resolved["AppPort"] == "9000"

    def test_resolved_is_read_only(self, lb_template, lb_params):
        resolved = resolve_parameters(lb_template, lb_params)
        with pytest.raises(TypeError):
            resolved["AppName"] = "other"  # type: ignore[index]


class TestBounds:
    @pytest.fixture
    def template(self):
        return parse_text(
            """
Parameters:
  Size:
    Type: Number
    Default: 5
    MinValue: 1
    MaxValue: 10
  Ports:
    Type: List<Number>
    Default: "80,443"
  Secret:
    Type: String
    NoEcho: true
    Default: hunter2
    MaxLength: 12
Resources:
  Topic:
    Type: AWS::SNS::Topic
"""
        )

    def test_value_bounds(self, template):
        with pytest.raises(ParameterValueError, match="exceeds MaxValue 10"):
            resolve_parameters(template, {"Size": 11})
        with pytest.raises(ParameterValueError, match="below MinValue 1"):
            resolve_parameters(template, {"Size": "0"})

    def test_number_list(self, template):
        assert resolve_parameters(template)["Ports"] == ["80", "443"]
        with pytest.raises(ParameterValueError, match="not a number"):
            resolve_parameters(template, {"Ports": "80,http"})

    def test_length_bound(self, template):
        with pytest.raises(ParameterValueError, match="exceeds MaxLength 12"):
            resolve_parameters(template, {"Secret": "x" * 13})

    def test_no_echo_masked(self, template):
        resolved = resolve_parameters(template)
        assert resolved["Secret"] == "hunter2"
        assert resolved.masked()["Secret"] == "****"
        assert resolved.masked()["Size"] == "5"


class TestCoerce:
    def test_scalar_rejects_list(self):
        param = Parameter(name="P", Type="String")
        with pytest.raises(ParameterValueError, match="single String"):
            coerce(param, ["a", "b"])

    def test_list_from_list(self):
        param = Parameter(name="P", Type="CommaDelimitedList")
        assert coerce(param, ["a", 1, True]) == ["a", "1", "true"]

    def test_empty_list_string(self):
        param = Parameter(name="P", Type="List<AWS::EC2::Subnet::Id>")
        assert coerce(param, "") == []

    def test_known_types(self):
        assert is_known_type("AWS::EC2::VPC::Id")
        assert is_known_type("List<AWS::EC2::Subnet::Id>")
        assert not is_known_type("Boolean")


class TestParameterInputs:
    def test_mapping_document(self):
        assert parse_parameter_document({"AppName": "shop"}) == {"AppName": "shop"}

    def test_list_document(self):
        data = [
            {"ParameterKey": "AppName", "ParameterValue": "shop"},
            {"ParameterKey": "AlbAccessLogsPrefix", "ParameterValue": ""},
        ]
        assert parse_parameter_document(data) == {"AppName": "shop", "AlbAccessLogsPrefix": ""}

    def test_bad_document(self):
        with pytest.raises(ValueError):
            parse_parameter_document("AppName=shop")

    def test_assignments(self):
        assert parse_assignments(["AppName=shop", "AlbAccessLogsPrefix=", "Url=a=b"]) == {
            "AppName": "shop",
            "AlbAccessLogsPrefix": "",
            "Url": "a=b",
        }

    def test_bad_assignment(self):
        with pytest.raises(ValueError, match="expected Key=Value"):
            parse_assignments(["AppName"])
