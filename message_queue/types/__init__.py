"""
Type definitions for the message queue.
"""

from message_queue.types.item import (
    DispatchResult,
    EnqueueOptions,
    QueueItem,
    ReleaseRecord,
    utc_now,
)

__all__ = [
    "QueueItem",
    "ReleaseRecord",
    "EnqueueOptions",
    "DispatchResult",
    "utc_now",
]
