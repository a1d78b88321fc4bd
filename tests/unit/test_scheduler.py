"""
Unit tests for the polling scheduler.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from pymongo.errors import AutoReconnect

from fakes import InMemoryStore, make_worker
from message_queue.db.repository import ItemRepository
from message_queue.exceptions import NoWorkerRegistered, UnknownOutcome
from message_queue.observability.metrics import MetricsCollector
from message_queue.types.item import QueueItem
from message_queue.worker.dispatcher import Dispatcher
from message_queue.worker.registry import WorkerRegistry
from message_queue.worker.scheduler import Scheduler


class TestScheduler:
    """Tests for Scheduler."""

    @pytest.fixture
    def registry(self) -> WorkerRegistry:
        """Create an empty worker registry."""
        return WorkerRegistry()

    @pytest.fixture
    def errors(self) -> list[BaseException]:
        """Collect errors passed to the error handler."""
        return []

    @pytest_asyncio.fixture
    async def scheduler(
        self,
        registry: WorkerRegistry,
        repo: ItemRepository,
        metrics: MetricsCollector,
        errors: list[BaseException],
    ) -> Scheduler:
        """Create a scheduler whose timer effectively never fires."""
        scheduler = Scheduler(
            registry,
            repo,
            Dispatcher(registry, repo, metrics),
            max_concurrency=2,
            polling_interval=60.0,
            error_handler=errors.append,
            metrics=metrics,
        )
        yield scheduler
        scheduler.stop_polling()
        await scheduler.wait_idle()

    async def _enqueue(self, repo: ItemRepository, count: int = 1) -> None:
        for i in range(count):
            await repo.insert(QueueItem(type="doSomething", message={"n": i}))

    async def test_poll_claims_and_processes(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        store: InMemoryStore,
    ):
        """Test that a poll cycle hands the claimed item to the worker."""
        worker = make_worker("Completed")
        registry.register("doSomething", worker)
        await self._enqueue(repo)

        await scheduler.poll()

        assert len(worker.calls) == 1
        assert worker.calls[0].received_time is not None
        assert store.documents == []
        assert scheduler.active_workers == 0

    async def test_poll_respects_max_concurrency(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
    ):
        """Test that no more than max_concurrency cycles run at once."""
        release = asyncio.Event()
        started: list[QueueItem] = []

        async def blocking_worker(item: QueueItem) -> str:
            started.append(item)
            await release.wait()
            return "Completed"

        registry.register("doSomething", blocking_worker)
        await self._enqueue(repo, 4)

        first = scheduler.poll()
        second = scheduler.poll()
        third = scheduler.poll()

        assert first is not None
        assert second is not None
        assert third is None
        assert scheduler.active_workers == 2

        await asyncio.sleep(0.05)
        assert len(started) == 2

        release.set()
        await asyncio.gather(first, second)

        assert scheduler.active_workers == 0

    async def test_counter_released_when_queue_empty(self, scheduler: Scheduler, registry):
        """Test that an empty claim frees the slot immediately."""
        registry.register("doSomething", make_worker("Completed"))

        await scheduler.poll()

        assert scheduler.active_workers == 0

    async def test_claim_error_goes_to_error_handler(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        errors: list[BaseException],
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test that store errors are trapped and reported."""
        error = AutoReconnect("FAILURE!")
        monkeypatch.setattr(repo, "claim", AsyncMock(side_effect=error))
        registry.register("doSomething", make_worker("Completed"))

        await scheduler.poll()

        assert errors == [error]
        assert scheduler.active_workers == 0

    async def test_no_worker_goes_to_error_handler(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        errors: list[BaseException],
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test that a claimed item without a worker is reported, not processed."""
        item = QueueItem(id=1, type="doSomething")
        monkeypatch.setattr(repo, "claim", AsyncMock(return_value=item))

        await scheduler.poll()

        assert len(errors) == 1
        assert isinstance(errors[0], NoWorkerRegistered)
        assert scheduler.active_workers == 0

    async def test_unknown_outcome_goes_to_error_handler(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        store: InMemoryStore,
        errors: list[BaseException],
    ):
        """Test that an unknown outcome is reported and the item stays claimed."""
        registry.register("doSomething", make_worker("Whatever"))
        await self._enqueue(repo)

        await scheduler.poll()

        assert len(errors) == 1
        assert isinstance(errors[0], UnknownOutcome)
        assert "receivedTime" in store.documents[0]

    async def test_worker_exception_goes_to_error_handler(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        errors: list[BaseException],
        metrics: MetricsCollector,
    ):
        """Test that worker exceptions never escape the poll cycle."""

        async def failing_worker(item: QueueItem) -> str:
            raise ValueError("FAILURE!")

        registry.register("doSomething", failing_worker)
        await self._enqueue(repo)

        await scheduler.poll()

        assert len(errors) == 1
        assert str(errors[0]) == "FAILURE!"
        assert scheduler.active_workers == 0
        assert metrics.poll_errors.labels(error="ValueError")._value.get() == 1

    async def test_async_error_handler_is_awaited(
        self,
        scheduler: Scheduler,
        repo: ItemRepository,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test that a coroutine error handler is awaited."""
        handler = AsyncMock()
        scheduler.error_handler = handler
        error = AutoReconnect("FAILURE!")
        monkeypatch.setattr(repo, "claim", AsyncMock(side_effect=error))

        await scheduler.poll()

        handler.assert_awaited_once_with(error)

    async def test_failing_error_handler_is_contained(
        self,
        scheduler: Scheduler,
        repo: ItemRepository,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test that an error handler raising does not break the cycle."""

        def broken_handler(error: BaseException) -> None:
            raise RuntimeError("handler broke")

        scheduler.error_handler = broken_handler
        monkeypatch.setattr(repo, "claim", AsyncMock(side_effect=AutoReconnect("FAILURE!")))

        await scheduler.poll()

        assert scheduler.active_workers == 0

    async def test_drains_backlog_while_polling(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        store: InMemoryStore,
        wait_for,
    ):
        """Test that a processed item triggers another poll without the timer."""
        worker = make_worker("Completed")
        registry.register("doSomething", worker)
        await self._enqueue(repo, 3)
        scheduler.start_polling()

        scheduler.poll()

        await wait_for(lambda: not store.documents)
        await scheduler.wait_idle()
        assert len(worker.calls) == 3
        assert scheduler.active_workers == 0

    async def test_no_drain_after_failed_processing(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        errors: list[BaseException],
    ):
        """Test that only successful processing triggers an immediate re-poll."""
        registry.register("doSomething", make_worker("Whatever"))
        await self._enqueue(repo, 3)
        scheduler.start_polling()

        await scheduler.poll()
        await asyncio.sleep(0.05)

        assert len(errors) == 1
        assert scheduler.in_flight == 0

    async def test_no_drain_when_stopped(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        store: InMemoryStore,
    ):
        """Test that a stopped scheduler claims nothing beyond the current cycle."""
        worker = make_worker("Completed")
        registry.register("doSomething", worker)
        await self._enqueue(repo, 3)

        await scheduler.poll()
        await asyncio.sleep(0.05)

        assert len(worker.calls) == 1
        assert len(store.documents) == 2

    async def test_start_polling_is_idempotent(self, scheduler: Scheduler):
        """Test that starting twice keeps a single timer."""
        scheduler.start_polling()
        task = scheduler._poll_task

        scheduler.start_polling()

        assert scheduler._poll_task is task
        assert scheduler.is_polling

    async def test_stop_polling(self, scheduler: Scheduler):
        """Test that stopping disarms the timer and allows a restart."""
        scheduler.start_polling()

        scheduler.stop_polling()
        assert not scheduler.is_polling

        scheduler.start_polling()
        assert scheduler.is_polling

    async def test_timer_triggers_polls(
        self,
        registry: WorkerRegistry,
        repo: ItemRepository,
        store: InMemoryStore,
        metrics: MetricsCollector,
        wait_for,
    ):
        """Test that the timer polls every interval until stopped."""
        worker = make_worker("Completed")
        registry.register("doSomething", worker)
        scheduler = Scheduler(
            registry,
            repo,
            Dispatcher(registry, repo, metrics),
            max_concurrency=1,
            polling_interval=0.01,
            metrics=metrics,
        )
        scheduler.start_polling()

        await self._enqueue(repo)
        await wait_for(lambda: len(worker.calls) == 1)

        scheduler.stop_polling()
        await scheduler.wait_idle()
        await self._enqueue(repo)
        await asyncio.sleep(0.05)

        assert len(worker.calls) == 1
        assert len(store.documents) == 1

    async def test_stop_polling_does_not_cancel_in_flight(
        self,
        scheduler: Scheduler,
        registry: WorkerRegistry,
        repo: ItemRepository,
        store: InMemoryStore,
    ):
        """Test that in-flight processing finishes after stop."""
        release = asyncio.Event()

        async def blocking_worker(item: QueueItem) -> str:
            await release.wait()
            return "Completed"

        registry.register("doSomething", blocking_worker)
        await self._enqueue(repo)
        scheduler.start_polling()

        cycle = scheduler.poll()
        await asyncio.sleep(0.01)
        scheduler.stop_polling()
        release.set()
        await cycle

        assert store.documents == []
