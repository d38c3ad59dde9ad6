"""Shared fixtures for core tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from stackwright.catalog import get_catalog
from stackwright.config import ReconcilerConfig
from stackwright.evaluator import NamingContext, evaluate
from stackwright.parameters import resolve_parameters
from stackwright.parser import parse_file, parse_text
from stackwright.providers.local import LocalProvider
from stackwright.reconciler import Reconciler

FIXTURES = Path(__file__).parent / "fixtures"
LB_TEMPLATE = FIXTURES / "load-balancer.yaml"
NOTIFICATIONS_TEMPLATE = FIXTURES / "notifications.yaml"

TOPIC_ARN = "arn:aws:sns:us-east-1:123456789012:notif-notifications"

LB_PARAMS = {
    "AppName": "shop",
    "BusinessUnit": "retail",
    "AlbAccessLogsBucket": "shop-logs",
    "AlbAccessLogsPrefix": "alb/",
    "AlbCertificateArn": "arn:aws:acm:us-east-1:123456789012:certificate/0f1e2d3c-aaaa-bbbb-cccc-111122223333",
    "VpcId": "vpc-0abc1234",
    "LoadBalancerSubnets": "subnet-aaa,subnet-bbb",
    "SnSNotificationsStackName": "notif",
}


def _resolve(template, params=None, stack_name="shop-alb", exports=None, catalog=None, **context):
    ctx = NamingContext(stack_name=stack_name, parameters=resolve_parameters(template, params or {}), **context)
    return evaluate(template, ctx, catalog or get_catalog(), exports or {})


@pytest.fixture
def resolve():
    """Evaluate a template the way the reconciler does, with test defaults."""
    return _resolve


@pytest.fixture
def lb_path() -> Path:
    return LB_TEMPLATE


@pytest.fixture
def notifications_path() -> Path:
    return NOTIFICATIONS_TEMPLATE


@pytest.fixture
def topic_arn() -> str:
    return TOPIC_ARN


@pytest.fixture
def catalog():
    return get_catalog()


@pytest.fixture
def lb_template():
    return parse_file(LB_TEMPLATE)


@pytest.fixture
def lb_params() -> dict:
    return dict(LB_PARAMS)


@pytest.fixture
def lb_exports() -> dict:
    return {"notif-NotificationsSnsTopicArn": TOPIC_ARN}


@pytest.fixture
def small_template():
    """Three resources in a chain: Topic <- Alarm, Topic <- Bucket (by DependsOn)."""
    return parse_text(
        """
Parameters:
  Env:
    Type: String
    Default: dev
Resources:
  Topic:
    Type: AWS::SNS::Topic
    Properties:
      TopicName: !Sub "${Env}-topic"
  Alarm:
    Type: AWS::CloudWatch::Alarm
    Properties:
      AlarmName: !Sub "${Env}-alarm"
      ComparisonOperator: GreaterThanThreshold
      EvaluationPeriods: 1
      AlarmActions:
        - !Ref Topic
  Bucket:
    Type: AWS::S3::Bucket
    DependsOn: Topic
    Properties:
      BucketName: !Sub "${Env}-bucket"
Outputs:
  TopicArn:
    Value: !GetAtt Topic.TopicArn
"""
    )


@pytest.fixture
def provider(catalog):
    return LocalProvider(catalog=catalog)


@pytest.fixture
def config(tmp_path) -> ReconcilerConfig:
    return ReconcilerConfig(state_dir=tmp_path / "state", retry_base_delay=0, poll_interval=0)


@pytest.fixture
def reconciler(config, provider, catalog) -> Reconciler:
    return Reconciler(config, provider=provider, catalog=catalog, sleep=lambda _: None)


@pytest.fixture
def notifications_applied(reconciler):
    """The notifications stack exporting the topic ARN that the load balancer alarms import."""
    report = reconciler.apply(reconciler.plan(NOTIFICATIONS_TEMPLATE, "notif"))
    assert report.success
    return reconciler
