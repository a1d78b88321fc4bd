"""
Polling scheduler.

Claims available items on a fixed interval, and again right after each
successfully processed item, while fewer than ``max_concurrency`` poll
cycles are in flight. Each claimed item is processed in its own task.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from message_queue.constants import SPAN_CLAIM
from message_queue.db.repository import ItemRepository
from message_queue.observability.logging import bind_context, clear_context
from message_queue.observability.metrics import MetricsCollector, get_metrics
from message_queue.observability.tracing import get_tracer
from message_queue.worker.dispatcher import Dispatcher
from message_queue.worker.registry import WorkerRegistry

logger = logging.getLogger(__name__)

# Receives every error trapped by the polling loop; may be a coroutine function
ErrorHandler = Callable[[BaseException], Any]


def log_error(error: BaseException) -> None:
    """Default error handler: log the error with its traceback."""
    logger.error(
        f"Error in poll cycle: {error}",
        exc_info=error,
        extra={"error_type": type(error).__name__},
    )


class Scheduler:
    """
    Drives polling for a single queue.

    All admission decisions happen in ``poll`` on the event loop, with no
    ``await`` between checking and incrementing ``active_workers``, so the
    counter never exceeds ``max_concurrency``. Errors raised while claiming
    or processing never escape a poll cycle; they go to ``error_handler``.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        repository: ItemRepository,
        dispatcher: Dispatcher,
        *,
        max_concurrency: int,
        polling_interval: float,
        error_handler: ErrorHandler = log_error,
        name: str = "queue",
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            registry: Registered workers; their types bound what is claimed.
            repository: Item repository used to claim.
            dispatcher: Dispatcher used to process claimed items.
            max_concurrency: Maximum poll cycles in flight.
            polling_interval: Seconds between timer-driven polls.
            error_handler: Receives errors trapped by poll cycles.
            name: Label for logs and metrics (the collection name).
            metrics: Metrics collector. Defaults to the global one.
        """
        self.registry = registry
        self.repository = repository
        self.dispatcher = dispatcher
        self.max_concurrency = max_concurrency
        self.polling_interval = polling_interval
        self.error_handler = error_handler
        self.name = name

        self.active_workers = 0
        self._poll_task: asyncio.Task | None = None
        self._cycles: set[asyncio.Task] = set()
        self._metrics = metrics or get_metrics()

    @property
    def is_polling(self) -> bool:
        """Whether the polling timer is armed."""
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def in_flight(self) -> int:
        """Number of poll cycle tasks not yet finished."""
        return len(self._cycles)

    def start_polling(self) -> None:
        """
        Arm the polling timer. Does nothing if it is already armed.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        if self.is_polling:
            return

        loop = asyncio.get_running_loop()
        self._poll_task = loop.create_task(self._timer_loop(), name=f"{self.name}-poll")
        logger.info(
            "Polling started",
            extra={
                "queue": self.name,
                "polling_interval": self.polling_interval,
                "max_concurrency": self.max_concurrency,
            }
        )

    def stop_polling(self) -> None:
        """
        Disarm the polling timer.

        Cycles already in flight run to completion but do not trigger
        further polls.
        """
        if self._poll_task is None:
            return

        self._poll_task.cancel()
        self._poll_task = None
        logger.info(
            "Polling stopped",
            extra={"queue": self.name, "in_flight": self.in_flight}
        )

    async def wait_idle(self) -> None:
        """Wait until no poll cycle is in flight."""
        while self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    def poll(self) -> asyncio.Task | None:
        """
        Start one poll cycle if there is spare capacity.

        Returns:
            The poll cycle task, or None when at max concurrency.
        """
        if self.active_workers >= self.max_concurrency:
            return None

        self.active_workers += 1
        self._metrics.set_active_workers(self.name, self.active_workers)

        task = asyncio.get_running_loop().create_task(self._poll_cycle())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        return task

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.polling_interval)
            self.poll()

    def _drain(self) -> None:
        if self.is_polling:
            self.poll()

    async def _poll_cycle(self) -> None:
        """
        Claim and process at most one item.

        On successful processing another poll is scheduled immediately,
        draining a backlog without waiting for the timer.
        """
        processed = False
        try:
            with get_tracer().start_as_current_span(SPAN_CLAIM) as span:
                span.set_attribute("queue", self.name)
                item = await self.repository.claim(self.registry.types())

            if item is None:
                return

            bind_context(item_id=str(item.id), type=item.type)
            self._metrics.record_item_claimed(item.type)
            await self.dispatcher.process(item)
            processed = True

        except Exception as e:
            await self._handle_error(e)

        finally:
            self.active_workers -= 1
            self._metrics.set_active_workers(self.name, self.active_workers)
            clear_context()

            # Look for more work immediately since we just processed something
            if processed:
                asyncio.get_running_loop().call_soon(self._drain)

    async def _handle_error(self, error: Exception) -> None:
        self._metrics.record_poll_error(error)
        try:
            result = self.error_handler(error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Error handler failed",
                extra={"queue": self.name, "error": str(error)}
            )
