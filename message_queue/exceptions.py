"""
Queue error types.
"""

from typing import Any


class MessageQueueError(Exception):
    """Base class for all queue errors."""


class StoreUnavailable(MessageQueueError):
    """Raised when no store is configured or the store cannot be reached."""

    def __init__(self, message: str = "No store configured"):
        super().__init__(message)


class NoWorkerRegistered(MessageQueueError):
    """Raised when a claimed item has a type with no registered worker."""

    def __init__(self, item_type: str):
        self.item_type = item_type
        super().__init__(f"No worker registered for type: {item_type}")


class UnknownOutcome(MessageQueueError):
    """Raised when a worker returns something other than a known outcome."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Unknown outcome: {value!r}")
