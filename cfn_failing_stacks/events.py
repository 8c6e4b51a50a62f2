"""
Stack event records and the time window they are filtered against
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from dateutil import parser as date_parser

FAILURE_STATUSES = frozenset({'CREATE_FAILED', 'UPDATE_FAILED'})
NESTED_STACK_TYPE = 'AWS::CloudFormation::Stack'


def to_aware_datetime(value: Union[str, datetime]) -> datetime:
    """Convert a provider timestamp (ISO string or datetime) to an aware datetime.

    Naive values are taken to be UTC, which is what CloudFormation reports.
    """
    if isinstance(value, str):
        value = date_parser.isoparse(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def to_epoch_ms(moment: datetime) -> int:
    return int(round(moment.timestamp() * 1000))


def format_time(moment: datetime) -> str:
    """Human readable UTC time, e.g. 2024-05-01T10:00:00.123Z"""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime('%Y-%m-%dT%H:%M:%S.') + f"{utc.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class TimeWindow:
    """Open interval (start, end); an inverted window matches nothing"""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start < moment < self.end


@dataclass
class StackEvent:
    """One entry of describe-stack-events"""
    stack_id: str
    logical_resource_id: str
    resource_status: str
    timestamp: Union[str, datetime]
    stack_name: Optional[str] = None
    event_id: Optional[str] = None
    physical_resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_status_reason: Optional[str] = None
    resource_properties: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'StackEvent':
        return cls(
            stack_id=record.get('StackId', ''),
            logical_resource_id=record.get('LogicalResourceId', ''),
            resource_status=record.get('ResourceStatus', ''),
            timestamp=record['Timestamp'],
            stack_name=record.get('StackName'),
            event_id=record.get('EventId'),
            # resources that never materialised come back with an empty id
            physical_resource_id=record.get('PhysicalResourceId') or None,
            resource_type=record.get('ResourceType'),
            resource_status_reason=record.get('ResourceStatusReason'),
            resource_properties=record.get('ResourceProperties') or None,
            raw=dict(record),
        )

    @property
    def is_failure(self) -> bool:
        return self.resource_status in FAILURE_STATUSES

    @property
    def is_nested_stack(self) -> bool:
        return self.resource_type == NESTED_STACK_TYPE


@dataclass
class FailureEvent:
    """A failed StackEvent inside the window, with its properties parsed"""
    event: StackEvent
    queried_stack: str
    occurred_at: datetime
    properties: Optional[Any] = None

    @property
    def time(self) -> str:
        return format_time(self.occurred_at)

    def to_dict(self) -> Dict[str, Any]:
        """Report record: the provider's keys plus the derived Time"""
        record = dict(self.event.raw)
        record['Timestamp'] = to_epoch_ms(self.occurred_at)
        record['Time'] = self.time
        record['ResourceProperties'] = self.properties
        return record
