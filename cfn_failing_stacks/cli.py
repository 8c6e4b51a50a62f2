"""
Command line entry point

Finds the CloudFormation stack events within a stack (and its nested stacks)
and time period that have UPDATE_FAILED or CREATE_FAILED resource statuses.
"""
import argparse
import json
import logging
import os
import sys
import traceback
from datetime import datetime, timedelta, timezone

from botocore.exceptions import BotoCoreError
from dateutil import parser as date_parser

from .collector import DEFAULT_MAX_CONCURRENCY, collect_failures
from .errors import CfnFailingStacksError, InvalidTimeError
from .events import TimeWindow, format_time
from .fetcher import BACKENDS, DEFAULT_TIMEOUT, make_fetcher

logger = logging.getLogger('cfn_failing_stacks')

DESCRIPTION = (
    "Finds the AWS CloudFormation stack events within a given stack and time period "
    "which have 'UPDATE_FAILED' or 'CREATE_FAILED' resource statuses. This includes "
    "nested stacks, allowing you to quickly find the cause of failed stack deployments."
)

DEFAULT_LOOKBACK = timedelta(hours=1)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PROVIDER = 3
EXIT_INTERRUPTED = 130


def stack_identifier(value):
    if not value.strip():
        raise argparse.ArgumentTypeError("must be a non-empty stack name or ARN")
    return value


def positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def positive_float(value):
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {number}")
    return number


def build_parser():
    parser = argparse.ArgumentParser(
        prog='cfn-failing-stacks',
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Failures in the last hour
  cfn-failing-stacks my-stack

  # Failures in a given period, local time
  cfn-failing-stacks my-stack -s "2024-05-01 09:00" -e "2024-05-01 10:30"

  # Only the JSON report, through the boto3 backend
  cfn-failing-stacks arn:aws:cloudformation:us-east-1:123456789012:stack/my-stack/abc --backend boto3 -q
        """
    )

    parser.add_argument('stack', metavar='stackNameOrArn', type=stack_identifier,
                        help='The stack name or ARN to search within')
    parser.add_argument('--startTime', '--start-time', '-s', dest='start_time',
                        help='Start of the window, any parsable date in your timezone (default: one hour ago)')
    parser.add_argument('--endTime', '--end-time', '-e', dest='end_time',
                        help='End of the window, any parsable date in your timezone (default: now)')
    parser.add_argument('--region', '-r',
                        default=os.environ.get('AWS_REGION', os.environ.get('AWS_DEFAULT_REGION')),
                        help='AWS region')
    parser.add_argument('--profile', '-p',
                        default=os.environ.get('AWS_PROFILE'),
                        help='AWS named profile')
    parser.add_argument('--backend', choices=sorted(BACKENDS),
                        default=os.environ.get('CFN_FAILING_STACKS_BACKEND', 'cli'),
                        help='Query stack events through the AWS CLI or boto3 (default: cli)')
    parser.add_argument('--aws-cli',
                        default=os.environ.get('CFN_FAILING_STACKS_AWS_CLI', 'aws'),
                        help='AWS CLI executable for the cli backend')
    parser.add_argument('--timeout', type=positive_float,
                        default=os.environ.get('CFN_FAILING_STACKS_TIMEOUT', str(DEFAULT_TIMEOUT)),
                        help='Seconds to wait for each describe-stack-events call')
    parser.add_argument('--max-concurrency', type=positive_int,
                        default=os.environ.get('CFN_FAILING_STACKS_MAX_CONCURRENCY', str(DEFAULT_MAX_CONCURRENCY)),
                        help='Maximum number of stacks queried at once')
    parser.add_argument('--nested-stacks-only', action='store_true',
                        help='Only recurse into AWS::CloudFormation::Stack resources')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Print only the JSON report')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')
    return parser


def parse_time(value, default):
    """Parse a user supplied time; naive values are in the local timezone"""
    if value is None:
        return default
    try:
        moment = date_parser.parse(value)
        if moment.tzinfo is None:
            moment = moment.astimezone()
    except (ValueError, OverflowError) as e:
        raise InvalidTimeError(value, str(e)) from e
    return moment


def resolve_window(start_time=None, end_time=None, now=None):
    """TimeWindow from optional --startTime/--endTime values"""
    now = now or datetime.now(timezone.utc)
    start = parse_time(start_time, now - DEFAULT_LOOKBACK)
    end = parse_time(end_time, now)
    return TimeWindow(start=start, end=end)


def setup_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(levelname)s: %(message)s'
    )


def render_report(failures):
    return json.dumps([failure.to_dict() for failure in failures], indent='\t', default=str)


def run(args):
    """Collect and print the report; errors propagate to main"""
    window = resolve_window(args.start_time, args.end_time)

    if not args.quiet:
        print(f"Finding failing stack events between {format_time(window.start)} "
              f"and {format_time(window.end)} for stack {args.stack}")

    def show_progress(stack_identifier):
        print(f"\tgetting events for {stack_identifier}...", flush=True)

    fetcher = make_fetcher(
        args.backend,
        region=args.region,
        profile=args.profile,
        aws_cli=args.aws_cli,
        timeout=args.timeout,
    )
    failures = collect_failures(
        fetcher, args.stack, window,
        max_concurrency=args.max_concurrency,
        nested_stacks_only=args.nested_stacks_only,
        progress=None if args.quiet else show_progress,
    )
    print(render_report(failures))
    return failures


def main(argv=None):
    """Parse arguments, run, and return the process exit code"""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        run(args)
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except CfnFailingStacksError as e:
        logger.error(str(e))
        stderr = getattr(e, 'stderr', None)
        if stderr and stderr.strip() not in str(e):
            logger.error(stderr.strip())
        return e.exit_code
    except BotoCoreError as e:
        logger.error(f"AWS SDK error: {e}")
        return EXIT_PROVIDER
    except Exception as e:
        logger.error(f"✗ Error: {e}")
        if args.verbose:
            traceback.print_exc()
        return EXIT_ERROR
    return EXIT_OK
