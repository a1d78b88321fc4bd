"""
Worker registry.

Workers must be idempotent - an item may be delivered more than once if a
process crashes or a lease lapses while the worker is still running.
"""

import logging
from collections.abc import Awaitable, Callable, Iterator

from message_queue.constants import Outcome
from message_queue.types.item import QueueItem

logger = logging.getLogger(__name__)

# Type alias for worker functions. Workers may also return the outcome's
# plain string value ("Completed", "Retry", "Rejected").
Worker = Callable[[QueueItem], Awaitable[Outcome | str]]


class WorkerRegistry:
    """Mapping from item type to the worker that processes it."""

    def __init__(self) -> None:
        self._workers: dict[str, Worker] = {}

    def register(self, item_type: str, worker: Worker) -> None:
        """
        Register a worker for an item type.
        The last registration for a type wins.
        """
        replaced = item_type in self._workers
        self._workers[item_type] = worker
        logger.info(
            "Registered worker",
            extra={"type": item_type, "replaced": replaced}
        )

    def get(self, item_type: str) -> Worker | None:
        """Get the worker for a type, or None if not registered."""
        return self._workers.get(item_type)

    def types(self) -> list[str]:
        """List all registered item types."""
        return list(self._workers.keys())

    def __contains__(self, item_type: object) -> bool:
        return item_type in self._workers

    def __len__(self) -> int:
        return len(self._workers)

    def __iter__(self) -> Iterator[str]:
        return iter(self._workers)
