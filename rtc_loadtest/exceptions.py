"""Exceptions raised by the load test harness."""


class LoadTestError(Exception):
    """Base class for harness errors."""


class WaitTimeout(LoadTestError, TimeoutError):
    """An event did not reach its target count before the timeout."""

    def __init__(self, event_name: str, target_count: int, remaining: int, timeout: float):
        self.event_name = event_name
        self.target_count = target_count
        self.remaining = remaining
        self.timeout = timeout
        super().__init__(
            f"Event '{event_name}' did not reach {target_count} occurrences "
            f"in {timeout}s ({remaining} still missing)"
        )


class WaitCancelled(LoadTestError):
    """A pending wait was released because its poller stopped."""

    def __init__(self, event_name: str):
        self.event_name = event_name
        super().__init__(f"Wait for event '{event_name}' cancelled: polling stopped")


class RemoteOperationError(LoadTestError):
    """A remote command returned error output."""

    def __init__(self, operation: str, user_id: str, output: str = ""):
        self.operation = operation
        self.user_id = user_id
        self.output = output
        super().__init__(
            f"Some error occurred in browser instance {user_id} when {operation}"
        )


class NotConnectedError(LoadTestError):
    """No SSH connection is open to the browser instance."""


class TemplateError(LoadTestError):
    """A command template file is missing or unreadable."""

    def __init__(self, file_name: str, reason: str = ""):
        self.file_name = file_name
        super().__init__(f"Couldn't read command template '{file_name}': {reason}")
