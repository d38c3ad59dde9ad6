"""Tests for the diff planner: actions, replacement safety, exports and ordering."""

from __future__ import annotations

import json

import pytest
from stackwright.errors import ExportConflictError, ExportInUseError, UnsafeReplacementError
from stackwright.parser import parse_text
from stackwright.planner import Action, Planner, ReplacementPolicy
from stackwright.state import ObservedState
from stackwright.values import ResourceRef

ALERTS = """
Parameters:
  TopicName:
    Type: String
    Default: alerts
  Threshold:
    Type: Number
    Default: 1
  WithBucket:
    Type: String
    Default: "true"
Conditions:
  HasBucket: !Equals [!Ref WithBucket, "true"]
Resources:
  Topic:
    Type: AWS::SNS::Topic
    Properties:
      TopicName: !Ref TopicName
  Alarm:
    Type: AWS::CloudWatch::Alarm
    Properties:
      AlarmName: errors
      ComparisonOperator: GreaterThanThreshold
      EvaluationPeriods: 1
      Threshold: !Ref Threshold
      AlarmActions:
        - !Ref Topic
  Bucket:
    Type: AWS::S3::Bucket
    Condition: HasBucket
    DependsOn: Topic
    Properties:
      BucketName: alerts-archive
Outputs:
  TopicArn:
    Value: !Ref Topic
"""


@pytest.fixture
def alerts():
    return parse_text(ALERTS)


@pytest.fixture
def applied(reconciler, alerts):
    report = reconciler.apply(reconciler.plan(alerts, "alerts"))
    assert report.success
    return reconciler


def _ids(plan):
    return [c.logical_id for c in plan.changes]


class TestFreshPlan:
    def test_everything_created_in_order(self, reconciler, alerts):
        plan = reconciler.plan(alerts, "alerts")
        assert _ids(plan) == ["Topic", "Alarm", "Bucket"]
        assert {c.action for c in plan.changes} == {Action.CREATE}
        assert plan.summary() == {"create": 3, "update": 0, "replace": 0, "delete": 0, "no-op": 0}
        assert plan.get("Alarm").depends_on == ["Topic"]
        assert plan.get("Alarm").properties["AlarmActions"] == [ResourceRef("Topic")]

    def test_planning_makes_no_provider_calls(self, reconciler, provider, alerts):
        reconciler.plan(alerts, "alerts")
        assert provider.calls == []

    def test_plan_serializes(self, reconciler, alerts):
        data = json.loads(reconciler.plan(alerts, "alerts").to_json())
        assert data["stack_name"] == "alerts"
        assert data["changes"][1]["properties"]["AlarmActions"] == ["(known after apply: Topic)"]
        assert data["outputs"] == {"TopicArn": "(known after apply: Topic)"}

    def test_load_balancer_plan(self, notifications_applied, lb_params, lb_path):
        plan = notifications_applied.plan(lb_path, "shop-alb", lb_params)
        assert plan.summary()["create"] == 13
        assert _ids(plan)[:2] == ["AppToAlbSecurityGroup", "LoadBalancerSecurityGroup"]
        assert plan.exports == {
            "shop-alb-AppToAlbSecurityGroup": "AppToLbSecurityGroupId",
            "shop-alb-LoadBalancerTargetGroupArn": "LoadBalancerTargetGroupArn",
        }


class TestConvergence:
    def test_replan_after_apply_is_empty(self, applied, alerts):
        plan = applied.plan(alerts, "alerts")
        assert plan.is_empty
        assert plan.unchanged == ["Topic", "Alarm", "Bucket"]
        assert plan.outputs["TopicArn"] == "arn:aws:sns:us-east-1:123456789012:alerts"

    def test_in_place_update(self, applied, alerts):
        plan = applied.plan(alerts, "alerts", {"Threshold": 5})
        assert _ids(plan) == ["Alarm"]
        change = plan.get("Alarm")
        assert change.action == Action.UPDATE
        assert [(c.name, c.before, c.after, c.requires_replacement) for c in change.changes] == [
            ("Threshold", "1", "5", False)
        ]

    def test_updates_ordered_through_unchanged_resource(self, reconciler):
        template = parse_text(
            """
Parameters:
  Owner:
    Type: String
    Default: ops
Resources:
  Logs:
    Type: AWS::S3::Bucket
    Properties:
      BucketName: chain-logs
      Tags:
        - Key: owner
          Value: !Ref Owner
  LogsPolicy:
    Type: AWS::S3::BucketPolicy
    Properties:
      Bucket: !Ref Logs
      PolicyDocument:
        Statement: []
  Archive:
    Type: AWS::S3::Bucket
    DependsOn: LogsPolicy
    Properties:
      BucketName: chain-archive
      Tags:
        - Key: owner
          Value: !Ref Owner
"""
        )
        assert reconciler.apply(reconciler.plan(template, "chain")).success

        plan = reconciler.plan(template, "chain", {"Owner": "data"})
        assert plan.unchanged == ["LogsPolicy"]
        assert [(c.logical_id, c.action) for c in plan.changes] == [
            ("Logs", Action.UPDATE),
            ("Archive", Action.UPDATE),
        ]
        assert plan.get("Archive").depends_on == ["Logs"]

    def test_removed_resource_deleted_once(self, applied, alerts):
        plan = applied.plan(alerts, "alerts", {"WithBucket": "false"})
        assert _ids(plan) == ["Bucket"]
        change = plan.get("Bucket")
        assert change.action == Action.DELETE
        assert change.reason == "excluded by condition HasBucket"
        assert change.physical_id == "alerts-archive"

    def test_undeclared_resource_deleted(self, applied):
        template = parse_text(
            """
Resources:
  Topic:
    Type: AWS::SNS::Topic
    Properties:
      TopicName: alerts
"""
        )
        plan = applied.plan(template, "alerts")
        assert _ids(plan) == ["Bucket", "Alarm"]
        assert {c.reason for c in plan.changes} == {"no longer declared"}
        assert plan.unchanged == ["Topic"]

    def test_resource_gone_out_of_band_is_recreated(self, applied, provider, alerts):
        bucket = applied.store.load("alerts").resources["Bucket"]
        provider.delete(bucket.type, bucket.physical_id)
        plan = applied.plan(alerts, "alerts")
        assert _ids(plan) == ["Bucket"]
        assert plan.get("Bucket").action == Action.CREATE

    def test_stale_plan_without_refresh(self, applied, provider, alerts):
        bucket = applied.store.load("alerts").resources["Bucket"]
        provider.delete(bucket.type, bucket.physical_id)
        assert applied.plan(alerts, "alerts", refresh=False).is_empty


class TestReplacement:
    def test_unsafe_replacement_blocked(self, applied, alerts):
        with pytest.raises(UnsafeReplacementError) as exc:
            applied.plan(alerts, "alerts", {"TopicName": "alarms"})
        assert exc.value.logical_id == "Topic"
        assert exc.value.dependents == ["Bucket"]
        assert exc.value.properties == ["TopicName"]

    def test_unsafe_replacement_warned(self, applied, alerts):
        applied.config.replacement_policy = ReplacementPolicy.WARN
        plan = applied.plan(alerts, "alerts", {"TopicName": "alarms"})
        assert len(plan.warnings) == 1
        assert "Bucket" in plan.warnings[0]
        topic = plan.get("Topic")
        assert topic.action == Action.REPLACE
        assert topic.reason == "TopicName cannot change in place"
        assert [c.requires_replacement for c in topic.changes] == [True]
        # the alarm points at the new topic, which only exists after apply
        assert plan.get("Alarm").action == Action.UPDATE
        assert _ids(plan) == ["Topic", "Alarm"]

    def test_tolerant_dependents_allow_replacement(self, applied, alerts):
        plan = applied.plan(alerts, "alerts", {"TopicName": "alarms", "WithBucket": "false"})
        assert plan.warnings == []
        assert _ids(plan) == ["Bucket", "Topic", "Alarm"]
        assert plan.get("Topic").depends_on == ["Bucket"]
        assert plan.get("Alarm").depends_on == ["Topic"]

    def test_replacement_applies(self, applied, provider, alerts):
        old = applied.store.load("alerts").resources["Topic"].physical_id
        report = applied.apply(applied.plan(alerts, "alerts", {"TopicName": "alarms", "WithBucket": "false"}))
        assert report.success
        state = applied.store.load("alerts")
        new = state.resources["Topic"].physical_id
        assert new == "arn:aws:sns:us-east-1:123456789012:alarms"
        assert not provider.exists(old)
        assert provider.read("AWS::CloudWatch::Alarm", "errors").properties["AlarmActions"] == [new]
        assert applied.plan(alerts, "alerts", {"TopicName": "alarms", "WithBucket": "false"}).is_empty

    def test_type_change(self, reconciler):
        before = parse_text("Resources:\n  Store:\n    Type: AWS::SNS::Topic\n")
        after = parse_text("Resources:\n  Store:\n    Type: AWS::S3::Bucket\n")
        assert reconciler.apply(reconciler.plan(before, "store")).success

        plan = reconciler.plan(after, "store")
        change = plan.get("Store")
        assert change.action == Action.REPLACE
        assert change.previous_type == "AWS::SNS::Topic"
        assert change.reason == "type changed from AWS::SNS::Topic"
        assert reconciler.apply(plan).success
        assert reconciler.store.load("store").resources["Store"].type == "AWS::S3::Bucket"


class TestRetain:
    def test_retained_resource_is_forgotten_not_deleted(self, reconciler, provider):
        kept = parse_text(
            """
Resources:
  Topic:
    Type: AWS::SNS::Topic
  Logs:
    Type: AWS::S3::Bucket
    DeletionPolicy: Retain
    Properties:
      BucketName: keep-me
"""
        )
        assert reconciler.apply(reconciler.plan(kept, "keep")).success
        plan = reconciler.plan(parse_text("Resources:\n  Topic:\n    Type: AWS::SNS::Topic\n"), "keep")
        change = plan.get("Logs")
        assert change.action == Action.DELETE
        assert change.retain

        assert reconciler.apply(plan).success
        assert provider.exists("keep-me")
        assert "Logs" not in reconciler.store.load("keep").resources


class TestExports:
    def test_export_owned_by_other_stack(self, notifications_applied):
        template = parse_text(
            """
Resources:
  Topic:
    Type: AWS::SNS::Topic
Outputs:
  Arn:
    Value: !Ref Topic
    Export:
      Name: notif-NotificationsSnsTopicArn
"""
        )
        with pytest.raises(ExportConflictError, match="stack 'notif'"):
            notifications_applied.plan(template, "thief")

    def test_destroying_imported_export(self, notifications_applied, lb_params, lb_path):
        assert notifications_applied.apply(notifications_applied.plan(lb_path, "shop-alb", lb_params)).success
        with pytest.raises(ExportInUseError) as exc:
            notifications_applied.plan_destroy("notif")
        assert exc.value.importers == ["shop-alb"]

    def test_changing_imported_export(self, notifications_applied, lb_params, lb_path, notifications_path):
        assert notifications_applied.apply(notifications_applied.plan(lb_path, "shop-alb", lb_params)).success
        with pytest.raises(ExportInUseError, match="notif-NotificationsSnsTopicArn"):
            notifications_applied.plan(notifications_path, "notif", {"TopicName": "renamed"})

    def test_unimported_export_may_change(self, notifications_applied, notifications_path):
        plan = notifications_applied.plan(notifications_path, "notif", {"TopicName": "renamed"})
        assert plan.get("NotificationsSnsTopic").action == Action.REPLACE


class TestPlannerDirect:
    def test_destroy_of_empty_state(self, catalog):
        plan = Planner(catalog).plan(None, ObservedState(None), stack_name="nothing")
        assert plan.is_empty
        assert plan.is_destroy
        assert plan.stack_name == "nothing"

    def test_policy_accepts_strings(self, catalog):
        assert Planner(catalog, replacement_policy="warn").replacement_policy == ReplacementPolicy.WARN
