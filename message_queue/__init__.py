"""
Durable Message Queue

A lease-based work queue on a document store with at-least-once delivery,
bounded in-process concurrency and visibility-timeout crash recovery.
"""

__version__ = "1.0.0"

from message_queue.constants import Outcome
from message_queue.exceptions import (
    MessageQueueError,
    NoWorkerRegistered,
    StoreUnavailable,
    UnknownOutcome,
)
from message_queue.queue import MessageQueue
from message_queue.types import DispatchResult, EnqueueOptions, QueueItem, ReleaseRecord

__all__ = [
    "MessageQueue",
    "Outcome",
    "QueueItem",
    "ReleaseRecord",
    "EnqueueOptions",
    "DispatchResult",
    "MessageQueueError",
    "StoreUnavailable",
    "NoWorkerRegistered",
    "UnknownOutcome",
]
