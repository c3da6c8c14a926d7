"""ProgressGate errors."""


class ProgressGateError(Exception):
    """Base error for ProgressGate operations."""

    def __init__(self, message: str, code: str = "PROGRESSGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class MalformedRecordError(ProgressGateError):
    """A remote row could not be turned into a typed record."""

    def __init__(self, table: str, reason: str):
        super().__init__(f"Malformed {table} row: {reason}", "MALFORMED_RECORD")
        self.table = table
        self.reason = reason


class FetchTimeoutError(ProgressGateError):
    """A remote fetch did not complete in time."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} timed out after {timeout:g}s",
            "FETCH_TIMEOUT",
        )
        self.operation = operation
        self.timeout = timeout


class SubscriptionError(ProgressGateError):
    """A change feed channel could not be opened."""

    def __init__(self, channel: str, reason: str):
        super().__init__(
            f"Could not subscribe to {channel}: {reason}",
            "SUBSCRIPTION_FAILED",
        )
        self.channel = channel
        self.reason = reason


class InvalidFeedbackError(ProgressGateError, ValueError):
    """Feedback payload rejected before any write."""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_FEEDBACK")


class TaskNotTrackedError(ProgressGateError):
    """No live tracker exists for the task."""

    def __init__(self, task_id: str):
        super().__init__(f"Task is not being tracked: {task_id}", "TASK_NOT_TRACKED")
        self.task_id = task_id
