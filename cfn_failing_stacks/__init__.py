"""
Find the failed resource events of a CloudFormation stack and its nested stacks
"""
from .collector import FailureCollector, collect_failures, filter_failures, find_child_stack
from .errors import (
    CfnFailingStacksError,
    InvalidTimeError,
    MalformedPropertiesError,
    ProviderQueryError,
)
from .events import FAILURE_STATUSES, FailureEvent, StackEvent, TimeWindow
from .fetcher import Boto3EventFetcher, CliEventFetcher, make_fetcher

__version__ = '1.0.0'

__all__ = [
    'FAILURE_STATUSES',
    'Boto3EventFetcher',
    'CfnFailingStacksError',
    'CliEventFetcher',
    'FailureCollector',
    'FailureEvent',
    'InvalidTimeError',
    'MalformedPropertiesError',
    'ProviderQueryError',
    'StackEvent',
    'TimeWindow',
    'collect_failures',
    'filter_failures',
    'find_child_stack',
    'make_fetcher',
]
