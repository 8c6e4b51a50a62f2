"""
Errors raised while collecting failing stack events
Each category maps to its own process exit code
"""
from typing import Any, List, Optional


class CfnFailingStacksError(Exception):
    """Base error for this tool"""
    exit_code = 1

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.stack_path: List[str] = []  # outermost parent first

    def annotate(self, parent_stack: str) -> 'CfnFailingStacksError':
        """Record the parent stack whose recursion led to this error"""
        self.stack_path.insert(0, parent_stack)
        return self

    def __str__(self):
        if not self.stack_path:
            return self.message
        return f"{self.message} (while getting stack events for {' -> '.join(self.stack_path)})"


class ProviderQueryError(CfnFailingStacksError):
    """The describe-stack-events query failed, timed out or returned garbage"""
    exit_code = 3

    def __init__(self, stack_identifier: str, message: str,
                 payload: Any = None, stderr: Optional[str] = None):
        super().__init__(f"Error getting stack events for {stack_identifier}: {message}")
        self.stack_identifier = stack_identifier
        self.payload = payload
        self.stderr = stderr


class MalformedPropertiesError(CfnFailingStacksError):
    """A ResourceProperties blob was present but is not valid JSON"""
    exit_code = 4

    def __init__(self, stack_identifier: str, logical_resource_id: str, raw: str, reason: str):
        super().__init__(
            f"Malformed ResourceProperties on {logical_resource_id} in {stack_identifier}: {reason}"
        )
        self.stack_identifier = stack_identifier
        self.logical_resource_id = logical_resource_id
        self.raw = raw


class InvalidTimeError(CfnFailingStacksError):
    """A --startTime/--endTime value could not be parsed"""
    exit_code = 2

    def __init__(self, value: str, reason: str):
        super().__init__(f"Could not parse time {value!r}: {reason}")
        self.value = value
