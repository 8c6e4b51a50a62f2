"""
Collect failing events from a stack and every nested stack it points to

Stacks are fetched through a bounded thread pool. Workers only fetch and
filter a single stack; the calling thread owns the work queue, schedules
child stacks as their parents complete and assembles the result depth-first
once everything has finished. Any failure cancels the queued work and is
re-raised, annotated with the chain of parent stacks.
"""
import json
import logging
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .errors import CfnFailingStacksError, MalformedPropertiesError, ProviderQueryError
from .events import FailureEvent, StackEvent, TimeWindow, to_aware_datetime

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


def filter_failures(stack_identifier: str, events: Iterable[StackEvent],
                    window: TimeWindow) -> List[FailureEvent]:
    """Failed events of one stack that fall strictly inside the window, in provider order"""
    failures = []
    for event in events:
        if not event.is_failure:
            continue

        try:
            occurred_at = to_aware_datetime(event.timestamp)
        except (ValueError, OverflowError) as e:
            raise ProviderQueryError(
                stack_identifier, f"bad Timestamp {event.timestamp!r} on {event.logical_resource_id}",
                payload=event.raw,
            ) from e
        if not window.contains(occurred_at):
            continue

        properties = None
        if event.resource_properties is not None:
            try:
                properties = json.loads(event.resource_properties)
            except json.JSONDecodeError as e:
                raise MalformedPropertiesError(
                    stack_identifier, event.logical_resource_id, event.resource_properties, str(e),
                ) from e

        failures.append(FailureEvent(
            event=event,
            queried_stack=stack_identifier,
            occurred_at=occurred_at,
            properties=properties,
        ))
    return failures


def find_child_stack(failure: FailureEvent, path: Tuple[str, ...] = (),
                     nested_stacks_only: bool = False) -> Optional[str]:
    """The stack a failure event points at, or None if there is nothing to recurse into.

    A stack's own status events carry the stack itself as the physical id,
    either as the name it was queried by or as its ARN; neither is a child.
    """
    event = failure.event
    child_id = event.physical_resource_id
    if not child_id:
        return None
    if child_id == failure.queried_stack or child_id == event.stack_id:
        return None
    if child_id in path:
        logger.warning(f"Not revisiting {child_id}, already on the path {' -> '.join(path)}")
        return None
    if nested_stacks_only and not event.is_nested_stack:
        return None
    return child_id


class _StackNode:
    """One queried stack in the tree being built"""

    def __init__(self, identifier: str, ancestors: Tuple[str, ...] = ()):
        self.identifier = identifier
        self.ancestors = ancestors
        self.failures: List[FailureEvent] = []
        self.child_refs: List[Optional[str]] = []  # parallel to failures
        self.children: Dict[str, '_StackNode'] = {}

    @property
    def path(self) -> Tuple[str, ...]:
        return self.ancestors + (self.identifier,)


class FailureCollector:
    """Walks a stack tree and gathers its failing events"""

    def __init__(self, fetcher, window: TimeWindow,
                 max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
                 nested_stacks_only: bool = False,
                 progress: Optional[Callable[[str], None]] = None):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.fetcher = fetcher
        self.window = window
        self.max_concurrency = max_concurrency
        self.nested_stacks_only = nested_stacks_only
        self.progress = progress

    def _visit(self, node: _StackNode) -> List[FailureEvent]:
        if self.progress:
            self.progress(node.identifier)
        events = self.fetcher.fetch_events(node.identifier)
        failures = filter_failures(node.identifier, events, self.window)
        logger.debug(f"{node.identifier}: {len(failures)} of {len(events)} events failed inside the window")
        return failures

    def _expand(self, node: _StackNode) -> List[_StackNode]:
        """Record child references of a finished node; return the children to fetch"""
        new_children = []
        for failure in node.failures:
            child_id = find_child_stack(failure, node.path, self.nested_stacks_only)
            node.child_refs.append(child_id)
            if child_id and child_id not in node.children:
                child = _StackNode(child_id, node.path)
                node.children[child_id] = child
                new_children.append(child)
        return new_children

    def _flatten(self, node: _StackNode) -> List[FailureEvent]:
        results = []
        for failure, child_id in zip(node.failures, node.child_refs):
            results.append(failure)
            if child_id:
                results.extend(self._flatten(node.children[child_id]))
        return results

    def collect(self, stack_identifier: str) -> List[FailureEvent]:
        """Failing events of a stack and its nested stacks, depth-first pre-order"""
        root = _StackNode(stack_identifier)
        executor = ThreadPoolExecutor(max_workers=self.max_concurrency,
                                      thread_name_prefix='stack-events')
        pending = {executor.submit(self._visit, root): root}
        try:
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    node = pending.pop(future)
                    try:
                        node.failures = future.result()
                    except CfnFailingStacksError as e:
                        for parent in reversed(node.ancestors):
                            e.annotate(parent)
                        raise
                    for child in self._expand(node):
                        logger.debug(f"Queueing nested stack {child.identifier} (from {node.identifier})")
                        pending[executor.submit(self._visit, child)] = child
        except BaseException:
            # fail fast: drop queued fetches, leave running ones to finish on their own
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown()
        return self._flatten(root)


def collect_failures(fetcher, stack_identifier: str, window: TimeWindow,
                     max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
                     nested_stacks_only: bool = False,
                     progress: Optional[Callable[[str], None]] = None) -> List[FailureEvent]:
    collector = FailureCollector(fetcher, window, max_concurrency=max_concurrency,
                                 nested_stacks_only=nested_stacks_only, progress=progress)
    return collector.collect(stack_identifier)
