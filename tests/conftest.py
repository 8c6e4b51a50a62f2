"""Shared fixtures: an in-memory fetcher and stack event builders."""

import threading
from datetime import datetime, timezone

import pytest

from cfn_failing_stacks.events import StackEvent, TimeWindow


def ms(value):
    """Aware UTC datetime for an epoch time in milliseconds."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def stack_arn(stack_name):
    return f"arn:aws:cloudformation:us-east-1:123456789012:stack/{stack_name}/11111111-2222-3333-4444-555555555555"


def make_record(stack, logical_id, status, ts, physical_id=None,
                properties=None, resource_type='AWS::S3::Bucket', reason=None):
    """A describe-stack-events record as the AWS CLI prints it."""
    record = {
        'StackId': stack_arn(stack),
        'EventId': f"{logical_id}-{status}-{ts}",
        'StackName': stack,
        'LogicalResourceId': logical_id,
        'PhysicalResourceId': physical_id if physical_id is not None else '',
        'ResourceType': resource_type,
        'Timestamp': ms(ts).isoformat(),
        'ResourceStatus': status,
    }
    if reason:
        record['ResourceStatusReason'] = reason
    if properties is not None:
        record['ResourceProperties'] = properties
    return record


class FakeFetcher:
    """Serves canned records per stack; an Exception value is raised instead."""

    def __init__(self, stacks):
        self.stacks = stacks
        self.calls = []
        self._lock = threading.Lock()

    def fetch_events(self, stack_identifier):
        with self._lock:
            self.calls.append(stack_identifier)
        value = self.stacks[stack_identifier]
        if isinstance(value, Exception):
            raise value
        return [StackEvent.from_record(record) for record in value]


@pytest.fixture
def window():
    """The window (1000ms, 5000ms) after the epoch."""
    return TimeWindow(start=ms(1000), end=ms(5000))


@pytest.fixture
def aws_credentials(monkeypatch):
    """Dummy AWS credentials so botocore never looks for real ones."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
