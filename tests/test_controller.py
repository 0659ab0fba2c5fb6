"""Unit tests for controller.py - Hub work queue and retry handling."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from config import ControllerConfig
from controller import Controller, compute_backoff
from events import EventBus, EventType, ObjectEvent
from hub.base import ObjectKey, ReconcileResult
from hub.errors import DeployError, NotFoundError, StatusPersistError

KEY = ObjectKey("ns", "foo")


def event(kind="Hub", name="foo", event_type=EventType.MODIFIED, **kwargs):
    return ObjectEvent(event_type=event_type, kind=kind, namespace="ns", name=name, **kwargs)


class TestComputeBackoff:
    """Tests for compute_backoff."""

    def test_exponential_without_jitter(self):
        delays = [compute_backoff(n, 5.0, 300.0, 0.0) for n in range(4)]
        assert delays == [5.0, 10.0, 20.0, 40.0]

    def test_capped(self):
        assert compute_backoff(10, 5.0, 300.0, 0.0) == 300.0

    def test_huge_failure_count(self):
        assert compute_backoff(10_000, 5.0, 300.0, 0.0) == 300.0

    def test_jitter_bounds(self):
        for _ in range(50):
            delay = compute_backoff(0, 10.0, 300.0, 0.1)
            assert 9.0 <= delay <= 11.0


class TestController:
    """Tests for Controller construction and event mapping."""

    @pytest.fixture
    def controller(self):
        config = ControllerConfig(reconcile_interval=1, max_concurrent_reconciles=2)
        return Controller(store=AsyncMock(), reconciler=AsyncMock(), config=config)

    def test_init(self, controller):
        """Test controller initialization."""
        assert controller.reconcile_interval == 1
        assert controller.max_concurrent_reconciles == 2
        assert controller.running is False
        assert controller.queue_depth() == 0

    def test_init_default_config(self):
        """Test controller with default config."""
        controller = Controller(store=AsyncMock(), reconciler=AsyncMock())
        assert controller.reconcile_interval == 300
        assert controller.max_concurrent_reconciles == 5

    def test_enqueue_deduplicates(self, controller):
        assert controller.enqueue(KEY) is True
        assert controller.enqueue(KEY) is False
        assert controller.queue_depth() == 1

    def test_enqueue_while_processing_marks_dirty(self, controller):
        controller._processing.add(KEY)

        assert controller.enqueue(KEY) is False
        assert controller.queue_depth() == 0
        assert KEY in controller._dirty

    def test_hub_event(self, controller):
        assert controller.handle_event(event()) == KEY
        assert controller.queue_depth() == 1

    def test_hub_status_event_ignored(self, controller):
        assert controller.handle_event(event(subresource="status")) is None
        assert controller.queue_depth() == 0

    def test_hub_deleted_event(self, controller):
        assert controller.handle_event(event(event_type=EventType.DELETED)) == KEY

    def test_owned_object_event(self, controller):
        child = event(kind="Deployment", name="mcm-apiserver", owner_kind="Hub", owner_name="foo")
        assert controller.handle_event(child) == KEY

    def test_owned_object_status_event(self, controller):
        child = event(
            kind="Deployment",
            name="mcm-apiserver",
            owner_kind="Hub",
            owner_name="foo",
            subresource="status",
        )
        assert controller.handle_event(child) == KEY

    def test_unowned_object_event_ignored(self, controller):
        assert controller.handle_event(event(kind="Deployment", name="web")) is None

    def test_reconciled_event_ignored(self, controller):
        assert controller.handle_event(event(event_type=EventType.RECONCILED)) is None


@pytest.mark.asyncio
class TestControllerAsync:
    """Async tests for Controller."""

    @pytest.fixture
    def mock_store(self):
        store = AsyncMock()
        store.list_hub_keys = AsyncMock(return_value=[])
        return store

    @pytest.fixture
    def mock_reconciler(self):
        reconciler = AsyncMock()
        reconciler.reconcile = AsyncMock(return_value=ReconcileResult())
        return reconciler

    @pytest.fixture
    def controller(self, mock_store, mock_reconciler):
        config = ControllerConfig(
            reconcile_interval=1,
            max_concurrent_reconciles=2,
            backoff_base_delay=5.0,
            backoff_max_delay=300.0,
            backoff_jitter_factor=0.0,
        )
        return Controller(store=mock_store, reconciler=mock_reconciler, config=config)

    async def test_trigger_reconciliation(self, controller):
        await controller.trigger_reconciliation(KEY)
        assert controller.queue_depth() == 1

    async def test_process_success(self, controller, mock_reconciler):
        delay = await controller.process(KEY)

        assert delay is None
        args = mock_reconciler.reconcile.await_args.args
        assert args[0] == KEY
        assert KEY not in controller._delayed

    async def test_process_passes_request_logger(self, controller, mock_reconciler):
        await controller.process(KEY)

        log = mock_reconciler.reconcile.await_args.args[1]
        assert log.extra == {"request": "ns/foo"}

    async def test_process_retryable_error_backs_off(self, controller, mock_reconciler):
        mock_reconciler.reconcile.side_effect = DeployError("apply failed")

        first = await controller.process(KEY)
        second = await controller.process(KEY)

        assert first == 5.0
        assert second == 10.0
        assert KEY in controller._delayed
        controller._delayed[KEY].cancel()

    async def test_process_status_persist_error_retried(self, controller, mock_reconciler):
        mock_reconciler.reconcile.side_effect = StatusPersistError("write failed")

        assert await controller.process(KEY) == 5.0
        controller._delayed[KEY].cancel()

    async def test_process_unexpected_error_backs_off(self, controller, mock_reconciler):
        mock_reconciler.reconcile.side_effect = RuntimeError("bug")

        assert await controller.process(KEY) == 5.0
        controller._delayed[KEY].cancel()

    async def test_process_not_found_dropped(self, controller, mock_reconciler):
        controller._failures[KEY] = 3
        mock_reconciler.reconcile.side_effect = NotFoundError("gone")

        assert await controller.process(KEY) is None
        assert KEY not in controller._failures
        assert KEY not in controller._delayed

    async def test_success_resets_backoff(self, controller, mock_reconciler):
        mock_reconciler.reconcile.side_effect = DeployError("apply failed")
        await controller.process(KEY)
        controller._delayed.pop(KEY).cancel()

        mock_reconciler.reconcile.side_effect = None
        await controller.process(KEY)

        assert KEY not in controller._failures

    async def test_requeue_after(self, controller, mock_reconciler):
        mock_reconciler.reconcile.return_value = ReconcileResult(requeue_after=30.0)

        assert await controller.process(KEY) == 30.0
        controller._delayed[KEY].cancel()

    async def test_requeue_uses_backoff(self, controller, mock_reconciler):
        mock_reconciler.reconcile.return_value = ReconcileResult(requeue=True)

        assert await controller.process(KEY) == 5.0
        controller._delayed[KEY].cancel()

    async def test_enqueue_after_keeps_earliest(self, controller):
        controller.enqueue_after(KEY, 10.0)
        first = controller._delayed[KEY]

        controller.enqueue_after(KEY, 60.0)
        assert controller._delayed[KEY] is first

        controller.enqueue_after(KEY, 1.0)
        assert controller._delayed[KEY] is not first
        assert first.cancelled()
        controller._delayed[KEY].cancel()

    async def test_enqueue_after_zero_is_immediate(self, controller):
        controller.enqueue_after(KEY, 0)
        assert controller.queue_depth() == 1

    async def test_delayed_key_fires(self, controller):
        controller.enqueue_after(KEY, 0.01)
        await asyncio.sleep(0.05)

        assert controller.queue_depth() == 1
        assert KEY not in controller._delayed

    async def test_resync(self, controller, mock_store):
        mock_store.list_hub_keys.return_value = [KEY, ObjectKey("ns", "bar")]

        assert await controller.resync() == 2
        assert controller.queue_depth() == 2

    async def test_publishes_reconciled_event(self, mock_store, mock_reconciler):
        bus = EventBus()
        controller = Controller(store=mock_store, reconciler=mock_reconciler, event_bus=bus)
        _, sub = await bus.subscribe()

        await controller.process(KEY)

        published = await asyncio.wait_for(sub.__anext__(), timeout=1.0)
        assert published.event_type == EventType.RECONCILED
        assert published.key == KEY

    async def test_worker_requeues_dirty_key(self, controller, mock_reconciler):
        async def reconcile(key, log):
            # A change arrives while the key is being processed.
            controller.enqueue(key)
            return ReconcileResult()

        mock_reconciler.reconcile.side_effect = reconcile
        controller.running = True
        controller.enqueue(KEY)
        controller._queue.put_nowait(None)

        await asyncio.wait_for(controller._worker(0), timeout=1.0)

        assert mock_reconciler.reconcile.await_count == 1
        assert controller.queue_depth() == 1
        assert KEY in controller._queued

    async def test_start_and_stop(self, controller, mock_store, mock_reconciler):
        mock_store.list_hub_keys.return_value = [KEY]
        bus = EventBus()
        controller._event_bus = bus

        task = asyncio.create_task(controller.start())
        for _ in range(50):
            await asyncio.sleep(0.01)
            if mock_reconciler.reconcile.await_count:
                break

        await bus.publish(event(kind="Deployment", name="web", owner_kind="Hub", owner_name="bar"))
        for _ in range(50):
            await asyncio.sleep(0.01)
            if mock_reconciler.reconcile.await_count >= 2:
                break

        await controller.stop()
        await asyncio.wait_for(task, timeout=1.0)

        reconciled = {c.args[0] for c in mock_reconciler.reconcile.await_args_list}
        assert reconciled == {KEY, ObjectKey("ns", "bar")}
        assert controller.running is False
        assert bus.subscriber_count() == 0

