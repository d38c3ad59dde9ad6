"""Tests for template parsing and schema validation."""

from __future__ import annotations

import textwrap

import pytest
from stackwright.errors import SchemaError
from stackwright.parser import parse_document, parse_text
from stackwright.template import Template


def _doc(resources: str = "", parameters: str = "", extra: str = "") -> str:
    resources = resources or """
  Topic:
    Type: AWS::SNS::Topic
"""
    text = ""
    if parameters:
        text += "Parameters:\n" + textwrap.indent(textwrap.dedent(parameters), "  ")
    text += "Resources:\n" + resources
    return text + textwrap.dedent(extra)


class TestLoadBalancerTemplate:
    def test_parses(self, lb_template):
        assert isinstance(lb_template, Template)
        assert lb_template.format_version == "2010-09-09"
        assert len(lb_template.resources) == 13
        assert len(lb_template.parameters) == 25
        assert set(lb_template.conditions) == {"ShouldAddAlbBucketLogsPolicy", "IsAlbAccessLogsBucketEmpty"}

    def test_resource_fields(self, lb_template):
        lb = lb_template.resources["LoadBalancer"]
        assert lb.type == "AWS::ElasticLoadBalancingV2::LoadBalancer"
        assert lb.depends_on == ["AccessLogsBucketPolicy"]
        assert lb_template.resources["AccessLogsBucketPolicy"].condition == "ShouldAddAlbBucketLogsPolicy"

    def test_mapping_keys_are_strings(self, lb_template):
        mapping = lb_template.mappings["ElbAccessLogRegionMap"]
        assert mapping.lookup("us-east-1", "AccountId") == 127311923021

    def test_outputs_and_exports(self, lb_template):
        output = lb_template.outputs["AppToLbSecurityGroupId"]
        assert output.export_name == {"Fn::Sub": "${AWS::StackName}-AppToAlbSecurityGroup"}
        assert lb_template.outputs["StackName"].export is None

    def test_declaration_index(self, lb_template):
        index = lb_template.declaration_index()
        assert index["LoadBalancerSecurityGroup"] == 0
        assert index["RejectedRequestsAlarm"] == 12


class TestSchemaErrors:
    def test_unknown_resource_type(self):
        with pytest.raises(SchemaError, match="unknown resource type"):
            parse_text(_doc("  Thing:\n    Type: AWS::Nope::Thing\n"))

    def test_missing_required_property(self):
        with pytest.raises(SchemaError, match="GroupDescription"):
            parse_text(_doc("  Sg:\n    Type: AWS::EC2::SecurityGroup\n    Properties: {}\n"))

    def test_unknown_section(self):
        with pytest.raises(SchemaError, match="Transform"):
            parse_text(_doc(extra="Transform: AWS::Serverless-2016-10-31\n"))

    def test_no_resources(self):
        with pytest.raises(SchemaError, match="no Resources"):
            parse_document({"Resources": {}})

    def test_not_a_mapping(self):
        with pytest.raises(SchemaError):
            parse_document(["Resources"])

    def test_invalid_logical_id(self):
        with pytest.raises(SchemaError, match="alphanumeric"):
            parse_text(_doc("  My-Topic:\n    Type: AWS::SNS::Topic\n"))

    def test_undeclared_resource_condition(self):
        with pytest.raises(SchemaError, match="not declared"):
            parse_text(_doc("  Topic:\n    Type: AWS::SNS::Topic\n    Condition: Nope\n"))

    def test_wrong_intrinsic_arity(self):
        with pytest.raises(SchemaError, match="Fn::If takes a list of 3"):
            parse_text(
                _doc("  Topic:\n    Type: AWS::SNS::Topic\n    Properties:\n      TopicName: !If [OnlyTwo, a]\n")
            )

    def test_unsupported_intrinsic(self):
        with pytest.raises(SchemaError, match="unsupported intrinsic"):
            parse_document({"Resources": {"Topic": {"Type": "AWS::SNS::Topic", "Properties": {"A": {"Fn::Length": []}}}}})

    def test_export_without_name(self):
        with pytest.raises(SchemaError, match="Export needs a Name"):
            parse_text(_doc(extra="Outputs:\n  Arn:\n    Value: !Ref Topic\n    Export: {}\n"))

    def test_parameter_resource_name_clash(self):
        with pytest.raises(SchemaError, match="both a parameter and a resource"):
            parse_text(_doc(parameters="Topic:\n  Type: String\n  Default: x\n"))

    def test_unknown_parameter_type(self):
        with pytest.raises(SchemaError, match="unknown parameter type"):
            parse_text(_doc(parameters="P:\n  Type: Strang\n"))

    def test_unknown_parameter_key(self):
        with pytest.raises(SchemaError, match="Parameters.P"):
            parse_text(_doc(parameters="P:\n  Type: String\n  Defualt: x\n"))


class TestParameterConstraintConsistency:
    @pytest.mark.parametrize(
        "declaration, message",
        [
            ("Type: String\nAllowedPattern: '[a-z'\n", "not a valid regular expression"),
            ("Type: String\nDefault: prod\nAllowedValues: [dev, test]\n", "default"),
            ("Type: String\nDefault: ABC\nAllowedPattern: '[a-z]+'\n", "default"),
            ("Type: String\nAllowedValues: [abc, XYZ]\nAllowedPattern: '[a-z]+'\n", "allowed value 'XYZ'"),
            ("Type: String\nMinLength: 5\nMaxLength: 2\n", "MinLength 5 exceeds MaxLength 2"),
            ("Type: Number\nMinValue: 10\nMaxValue: 1\n", "MinValue 10 exceeds MaxValue 1"),
            ("Type: String\nDefault: a\nMinLength: 2\n", "default"),
            ("Type: Number\nDefault: 0\nMinValue: 1\n", "default"),
            ("Type: String\nAllowedValues: []\n", "AllowedValues is empty"),
        ],
    )
    def test_inconsistent(self, declaration, message):
        with pytest.raises(SchemaError, match=message):
            parse_text(_doc(parameters="P:\n" + textwrap.indent(declaration, "  ")))

    def test_consistent_constraints_pass(self):
        template = parse_text(
            _doc(parameters="P:\n  Type: String\n  Default: web\n  AllowedValues: [web, app]\n  MaxLength: 3\n")
        )
        assert template.parameters["P"].default == "web"

    def test_boolean_allowed_values(self, lb_template):
        param = lb_template.parameters["ShouldAddAlbBucketLogsPolicy"]
        assert param.default is True
        assert param.allowed_values == [True, False]
