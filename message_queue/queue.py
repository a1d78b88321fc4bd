"""
Message queue facade.

Producers enqueue typed messages; registered workers process them in the
background with bounded concurrency. Each instance owns its own worker
registry, concurrency counter and polling task, so several queues can run
in one process.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from message_queue.config import get_settings
from message_queue.constants import SPAN_ENQUEUE
from message_queue.db.adapter import SortSpec, StoreAdapter
from message_queue.db.connection import init_store
from message_queue.db.repository import ItemRepository
from message_queue.observability.metrics import MetricsCollector, get_metrics
from message_queue.observability.tracing import get_tracer
from message_queue.types.item import DispatchResult, EnqueueOptions, QueueItem, utc_now
from message_queue.worker.dispatcher import Dispatcher
from message_queue.worker.registry import Worker, WorkerRegistry
from message_queue.worker.scheduler import ErrorHandler, Scheduler, log_error

logger = logging.getLogger(__name__)


class MessageQueue:
    """
    Durable, lease-based work queue.

    Example:
        queue = await MessageQueue.connect()

        async def send_email(item: QueueItem) -> Outcome:
            ...
            return Outcome.COMPLETED

        queue.register_worker("send_email", send_email)
        await queue.enqueue("send_email", {"to": "someone@example.com"})
    """

    def __init__(
        self,
        store: StoreAdapter | None = None,
        *,
        collection_name: str | None = None,
        polling_interval_ms: int | None = None,
        processing_timeout_ms: int | None = None,
        max_concurrency: int | None = None,
        error_handler: ErrorHandler = log_error,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            store: Store adapter for the queue collection. Every store
                operation fails with StoreUnavailable while this is None.
            collection_name: Label for logs and metrics.
            polling_interval_ms: Milliseconds between timer-driven polls.
            processing_timeout_ms: Lease duration of a claimed item.
            max_concurrency: Maximum items processed at once.
            error_handler: Receives errors trapped by the polling loop.
            metrics: Metrics collector. Defaults to the global one.

        Unset options fall back to the application settings.
        """
        settings = get_settings()

        self.collection_name = collection_name or settings.queue_collection_name
        self.polling_interval_ms = (
            polling_interval_ms
            if polling_interval_ms is not None
            else settings.queue_polling_interval_ms
        )
        self.processing_timeout_ms = (
            processing_timeout_ms
            if processing_timeout_ms is not None
            else settings.queue_processing_timeout_ms
        )
        self.max_concurrency = (
            max_concurrency if max_concurrency is not None else settings.queue_max_concurrency
        )

        self._metrics = metrics or get_metrics()
        self.registry = WorkerRegistry()
        self.repository = ItemRepository(
            store,
            processing_timeout=timedelta(milliseconds=self.processing_timeout_ms),
        )
        self.dispatcher = Dispatcher(self.registry, self.repository, self._metrics)
        self.scheduler = Scheduler(
            self.registry,
            self.repository,
            self.dispatcher,
            max_concurrency=self.max_concurrency,
            polling_interval=self.polling_interval_ms / 1000,
            error_handler=error_handler,
            name=self.collection_name,
            metrics=self._metrics,
        )

    @classmethod
    async def connect(cls, collection_name: str | None = None, **kwargs: Any) -> "MessageQueue":
        """
        Create a queue on the configured MongoDB collection.

        Args:
            collection_name: Queue collection. Defaults to the configured one.
            **kwargs: Passed to the constructor.

        Returns:
            MessageQueue: A queue bound to the store.
        """
        store = await init_store(collection_name)
        return cls(store, collection_name=store.collection_name, **kwargs)

    @property
    def store(self) -> StoreAdapter | None:
        return self.repository.store

    @store.setter
    def store(self, store: StoreAdapter | None) -> None:
        self.repository.store = store

    @property
    def error_handler(self) -> ErrorHandler:
        return self.scheduler.error_handler

    @error_handler.setter
    def error_handler(self, handler: ErrorHandler) -> None:
        self.scheduler.error_handler = handler

    def register_worker(self, item_type: str, worker: Worker) -> None:
        """
        Register the worker for an item type and make sure polling runs.

        Must be called from a running event loop.
        """
        self.registry.register(item_type, worker)
        self.scheduler.start_polling()

    def start_polling(self) -> None:
        """Start polling again after ``stop_polling``."""
        self.scheduler.start_polling()

    def stop_polling(self) -> None:
        """Stop claiming new items. Items being processed are not cancelled."""
        self.scheduler.stop_polling()

    async def close(self) -> None:
        """Stop polling and wait for items being processed to finish."""
        self.stop_polling()
        if self.scheduler.in_flight:
            logger.info(
                f"Waiting for {self.scheduler.in_flight} poll cycles to complete",
                extra={"queue": self.collection_name}
            )
        await self.scheduler.wait_idle()

    async def enqueue(
        self,
        item_type: str,
        message: Any,
        options: EnqueueOptions | Mapping[str, Any] | None = None,
    ) -> QueueItem:
        """
        Add a message to the queue.

        Args:
            item_type: Type used to route the item to a worker.
            message: Message payload.
            options: Optional next receivable time and priority
                (1 highest to 10 lowest, default 1).

        Returns:
            The stored item.
        """
        if options is None:
            options = EnqueueOptions()
        elif not isinstance(options, EnqueueOptions):
            options = EnqueueOptions.model_validate(options)

        item = QueueItem(
            type=item_type,
            message=message,
            priority=options.priority,
            date_created=utc_now(),
            next_receivable_time=options.next_receivable_time,
        )

        return await self._insert(item)

    async def enqueue_and_process(self, item_type: str, message: Any) -> DispatchResult:
        """
        Store a message as already claimed and process it right away,
        bypassing the scheduler.

        Errors from the worker or the store propagate to the caller; an
        item that fails that way stays claimed until its lease lapses.

        Returns:
            DispatchResult describing the applied outcome.
        """
        now = utc_now()
        item = QueueItem(
            type=item_type,
            message=message,
            date_created=now,
            received_time=now,
        )
        created = await self._insert(item)

        return await self.dispatcher.process(created)

    async def _insert(self, item: QueueItem) -> QueueItem:
        with get_tracer().start_as_current_span(SPAN_ENQUEUE) as span:
            span.set_attribute("type", item.type)
            span.set_attribute("priority", item.priority)
            created = await self.repository.insert(item)

        self._metrics.record_item_enqueued(created.type, created.priority)
        logger.info(
            "Enqueued item",
            extra={"item_id": str(created.id), "type": created.type, "priority": created.priority}
        )
        return created

    async def remove_one(self, item_type: str, message_filter: Mapping[str, Any] | None = None) -> int:
        """Delete the first item of a type whose message matches the filter."""
        return await self.repository.remove_one(item_type, message_filter)

    async def remove_many(self, item_type: str, message_filter: Mapping[str, Any] | None = None) -> int:
        """Delete every item of a type whose message matches the filter."""
        return await self.repository.remove_many(item_type, message_filter)

    async def update_one(
        self,
        item_type: str,
        message_filter: Mapping[str, Any] | None,
        message_update: Mapping[str, Any] | None,
        next_receivable_time: datetime | None = None,
    ) -> int:
        """Set message fields (and optionally the next receivable time) on one item."""
        return await self.repository.update_one(
            item_type, message_filter, message_update, next_receivable_time
        )

    async def update_many(
        self,
        item_type: str,
        message_filter: Mapping[str, Any] | None,
        message_update: Mapping[str, Any] | None,
        next_receivable_time: datetime | None = None,
    ) -> int:
        """Set message fields (and optionally the next receivable time) on all matches."""
        return await self.repository.update_many(
            item_type, message_filter, message_update, next_receivable_time
        )

    async def count(self, item_type: str, message_filter: Mapping[str, Any] | None = None) -> int:
        """Count items of a type whose message matches the filter."""
        return await self.repository.count(item_type, message_filter)

    async def ensure_indexes(
        self,
        key_patterns: list[SortSpec] | None = None,
        **options: Any,
    ) -> list[str]:
        """Create indexes on the queue collection (defaults to the claim index)."""
        return await self.repository.ensure_indexes(key_patterns, **options)
