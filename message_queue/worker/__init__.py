"""
Worker module.
Contains the worker registry, dispatcher and polling scheduler.
"""

from message_queue.worker.dispatcher import Dispatcher, parse_outcome
from message_queue.worker.registry import Worker, WorkerRegistry
from message_queue.worker.scheduler import ErrorHandler, Scheduler, log_error

__all__ = [
    "Worker",
    "WorkerRegistry",
    "Dispatcher",
    "parse_outcome",
    "Scheduler",
    "ErrorHandler",
    "log_error",
]
