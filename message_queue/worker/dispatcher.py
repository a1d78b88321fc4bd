"""
Dispatcher routing claimed items to workers and applying their outcome.
"""

import logging
import time
from typing import Any

from message_queue.constants import SPAN_PROCESS_ITEM, Outcome
from message_queue.db.repository import ItemRepository
from message_queue.exceptions import NoWorkerRegistered, UnknownOutcome
from message_queue.observability.metrics import MetricsCollector, get_metrics
from message_queue.observability.tracing import get_tracer
from message_queue.types.item import DispatchResult, QueueItem
from message_queue.worker.registry import WorkerRegistry

logger = logging.getLogger(__name__)


def parse_outcome(value: Any) -> Outcome:
    """
    Validate a worker's return value.

    Args:
        value: What the worker returned.

    Returns:
        The matching Outcome.

    Raises:
        UnknownOutcome: If the value is not one of the known outcomes.
    """
    if isinstance(value, Outcome):
        return value
    if isinstance(value, str):
        try:
            return Outcome(value)
        except ValueError:
            pass
    raise UnknownOutcome(value)


class Dispatcher:
    """
    Runs the registered worker for an item and maps its outcome to a
    repository transition:

    - Completed -> item deleted
    - Retry -> item released
    - Rejected -> item rejected

    Errors (no worker, unknown outcome, worker exceptions) propagate and
    leave the item claimed until its lease lapses.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        repository: ItemRepository,
        metrics: MetricsCollector | None = None,
    ):
        self._registry = registry
        self._repository = repository
        self._metrics = metrics or get_metrics()

    async def process(self, item: QueueItem) -> DispatchResult:
        """
        Process a single claimed item.

        Args:
            item: The claimed item. The worker may set ``released_reason``,
                ``next_receivable_time`` and ``rejection_reason`` on it.

        Returns:
            DispatchResult describing the applied outcome.

        Raises:
            NoWorkerRegistered: If no worker handles the item's type.
            UnknownOutcome: If the worker returned an unrecognized value.
        """
        worker = self._registry.get(item.type)
        if worker is None:
            raise NoWorkerRegistered(item.type)

        start_time = time.monotonic()

        with get_tracer().start_as_current_span(SPAN_PROCESS_ITEM) as span:
            span.set_attribute("item_id", str(item.id))
            span.set_attribute("type", item.type)
            span.set_attribute("retry_count", item.retry_count or 0)

            outcome = parse_outcome(await worker(item))
            span.set_attribute("outcome", outcome.value)

        duration = time.monotonic() - start_time

        if outcome is Outcome.COMPLETED:
            affected = await self._repository.complete(item.id)
        elif outcome is Outcome.RETRY:
            affected = await self._repository.release(item)
        else:
            affected = await self._repository.reject(item)

        self._metrics.record_item_processed(item.type, outcome.value, duration)
        logger.info(
            "Processed queue item",
            extra={
                "item_id": str(item.id),
                "type": item.type,
                "outcome": outcome.value,
                "duration": f"{duration:.3f}s",
            }
        )

        return DispatchResult(
            item_id=item.id,
            item_type=item.type,
            outcome=outcome,
            affected=affected,
        )
