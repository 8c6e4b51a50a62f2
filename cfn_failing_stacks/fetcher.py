"""
Fetch CloudFormation stack events

Two backends, both issuing exactly one describe-stack-events query per call:
  - CliEventFetcher shells out to the AWS CLI (the default)
  - Boto3EventFetcher calls the CloudFormation API through boto3

Neither filters, caches, retries or paginates.
"""
import json
import logging
import subprocess

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ProviderQueryError
from .events import StackEvent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300  # seconds


def _check_identifier(stack_identifier):
    if not stack_identifier:
        raise ValueError("stack identifier must be a non-empty name or ARN")


def _parse_events(stack_identifier, document):
    """Turn a describe-stack-events response into StackEvents"""
    events = document.get('StackEvents') if isinstance(document, dict) else None
    if not isinstance(events, list):
        raise ProviderQueryError(stack_identifier, "response has no StackEvents list",
                                 payload=document)
    try:
        return [StackEvent.from_record(record) for record in events]
    except (KeyError, TypeError, AttributeError) as e:
        raise ProviderQueryError(stack_identifier, f"malformed event record: {e}",
                                 payload=document) from e


class CliEventFetcher:
    """Runs `aws cloudformation describe-stack-events` for each query"""

    def __init__(self, aws_cli='aws', region=None, profile=None, timeout=DEFAULT_TIMEOUT):
        self.aws_cli = aws_cli
        self.region = region
        self.profile = profile
        self.timeout = timeout

    def build_command(self, stack_identifier):
        cmd = [
            self.aws_cli, 'cloudformation', 'describe-stack-events',
            '--stack-name', stack_identifier,
            '--output', 'json',
        ]
        if self.region:
            cmd.extend(['--region', self.region])
        if self.profile:
            cmd.extend(['--profile', self.profile])
        return cmd

    def fetch_events(self, stack_identifier):
        _check_identifier(stack_identifier)
        cmd = self.build_command(stack_identifier)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            # TimeoutExpired always carries bytes, text=True or not
            stderr = e.stderr.decode(errors='replace') if isinstance(e.stderr, bytes) else e.stderr
            raise ProviderQueryError(
                stack_identifier, f"timed out after {self.timeout}s",
                payload={'timeout': self.timeout}, stderr=stderr,
            ) from e
        except OSError as e:
            raise ProviderQueryError(
                stack_identifier, f"could not run {self.aws_cli}: {e}",
                payload={'errno': e.errno},
            ) from e

        if result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise ProviderQueryError(
                stack_identifier, f"{self.aws_cli} exited with code {result.returncode}: {stderr}",
                payload={'returncode': result.returncode}, stderr=result.stderr,
            )

        try:
            document = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProviderQueryError(
                stack_identifier, f"output is not JSON: {e}",
                payload=result.stdout, stderr=result.stderr,
            ) from e

        events = _parse_events(stack_identifier, document)
        logger.debug(f"{stack_identifier}: {len(events)} events")
        return events


class Boto3EventFetcher:
    """Calls CloudFormation DescribeStackEvents through boto3"""

    def __init__(self, region=None, profile=None, client=None, timeout=DEFAULT_TIMEOUT):
        if client is None:
            session = boto3.session.Session(profile_name=profile, region_name=region)
            config = Config(connect_timeout=timeout, read_timeout=timeout)
            client = session.client('cloudformation', config=config)
        self.cf = client

    def fetch_events(self, stack_identifier):
        _check_identifier(stack_identifier)
        logger.debug(f"DescribeStackEvents StackName={stack_identifier}")

        try:
            response = self.cf.describe_stack_events(StackName=stack_identifier)
        except ClientError as e:
            error = e.response.get('Error', {})
            raise ProviderQueryError(
                stack_identifier, f"{error.get('Code', 'ClientError')}: {error.get('Message', e)}",
                payload=error,
            ) from e
        except BotoCoreError as e:
            raise ProviderQueryError(stack_identifier, str(e), payload={'error': type(e).__name__}) from e

        events = _parse_events(stack_identifier, response)
        logger.debug(f"{stack_identifier}: {len(events)} events")
        return events


BACKENDS = {
    'cli': CliEventFetcher,
    'boto3': Boto3EventFetcher,
}


def make_fetcher(backend='cli', region=None, profile=None, aws_cli='aws', timeout=DEFAULT_TIMEOUT):
    """Build the fetcher for a backend name"""
    if backend == 'cli':
        return CliEventFetcher(aws_cli=aws_cli, region=region, profile=profile, timeout=timeout)
    if backend == 'boto3':
        return Boto3EventFetcher(region=region, profile=profile, timeout=timeout)
    raise ValueError(f"unknown backend {backend!r}, expected one of {sorted(BACKENDS)}")
