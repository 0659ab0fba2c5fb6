"""
Hub Controller - work queue in front of the Hub reconciler.

Similar to a Kubernetes controller: change events and a periodic resync
enqueue Hub keys, a fixed pool of workers pops them and runs one
reconciliation per key, and failures are retried with exponential backoff.
A key is never processed by two workers at once.
"""

import asyncio
import logging
import random
import time
from typing import Dict, List, Optional, Set

from config import ControllerConfig
from events import EventBus, EventType, ObjectEvent
from hub.base import HUB_KIND, ObjectKey, request_logger
from hub.errors import HubError
from hub.reconciler import HubReconciler

logger = logging.getLogger(__name__)


def compute_backoff(
    failures: int,
    base_delay: float,
    max_delay: float,
    jitter_factor: float,
) -> float:
    """
    Delay before retry number ``failures + 1``.

    ``min(base * 2**failures, max)`` scaled by a random factor in
    ``[1 - jitter, 1 + jitter]``.
    """
    delay = min(base_delay * (2 ** min(failures, 32)), max_delay)
    return delay * (1 + random.uniform(-jitter_factor, jitter_factor))


class Controller:
    """
    Dispatches Hub keys to the reconciler.

    Keys come from store change events (a Hub changed, or an object a Hub
    controls changed), from the periodic resync and from
    trigger_reconciliation().
    """

    def __init__(
        self,
        store,
        reconciler: HubReconciler,
        config: Optional[ControllerConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.config = config or ControllerConfig()
        self.reconcile_interval = self.config.reconcile_interval
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.running = False
        self._event_bus = event_bus

        self._queue: asyncio.Queue = asyncio.Queue()
        # Keys waiting in the queue, being processed, or re-requested
        # while being processed.
        self._queued: Set[ObjectKey] = set()
        self._processing: Set[ObjectKey] = set()
        self._dirty: Set[ObjectKey] = set()

        self._failures: Dict[ObjectKey, int] = {}
        self._delayed: Dict[ObjectKey, asyncio.TimerHandle] = {}

        self._shutdown_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._subscriber_id: Optional[str] = None

    async def start(self):
        """Start the workers, the event watch and the resync loop."""
        logger.info("Starting Hub Controller")
        self.running = True
        self._shutdown_event.clear()

        self._tasks = [
            asyncio.create_task(self._worker(i))
            for i in range(self.max_concurrent_reconciles)
        ]
        self._tasks.append(asyncio.create_task(self._resync_loop()))

        if self._event_bus:
            self._subscriber_id, subscription = await self._event_bus.subscribe()
            self._tasks.append(asyncio.create_task(self._watch_loop(subscription)))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Controller tasks cancelled")

    async def stop(self):
        """Stop the controller gracefully."""
        logger.info("Stopping Hub Controller")
        self.running = False
        self._shutdown_event.set()

        if self._event_bus and self._subscriber_id:
            await self._event_bus.unsubscribe(self._subscriber_id)
            self._subscriber_id = None

        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()

        for _ in range(self.max_concurrent_reconciles):
            self._queue.put_nowait(None)

        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks.clear()

    # ==================== Queue ====================

    def enqueue(self, key: ObjectKey) -> bool:
        """
        Add a key to the queue.

        Returns:
            True if the key was queued now; False if it was already queued
            or is being processed (it is then re-queued once done)
        """
        if key in self._processing:
            self._dirty.add(key)
            return False
        if key in self._queued:
            return False
        self._queued.add(key)
        self._queue.put_nowait(key)
        return True

    def enqueue_after(self, key: ObjectKey, delay: float) -> None:
        """Add a key to the queue after ``delay`` seconds, keeping the earliest."""
        if delay <= 0:
            self.enqueue(key)
            return

        loop = asyncio.get_running_loop()
        existing = self._delayed.get(key)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._delayed[key] = loop.call_later(delay, self._fire_delayed, key)

    def _fire_delayed(self, key: ObjectKey) -> None:
        self._delayed.pop(key, None)
        self.enqueue(key)

    def queue_depth(self) -> int:
        return self._queue.qsize()

    async def trigger_reconciliation(self, key: ObjectKey) -> None:
        """Manually trigger reconciliation for a specific Hub."""
        logger.info(f"Manually triggering reconciliation for Hub {key}")
        self.enqueue(key)

    # ==================== Event sources ====================

    def handle_event(self, event: ObjectEvent) -> Optional[ObjectKey]:
        """
        Map a store change to the Hub key it concerns and enqueue it.

        Hub status writes are ignored, since the reconciler produces them.

        Returns:
            The enqueued Hub key, or None if the event is not relevant
        """
        if event.event_type == EventType.RECONCILED:
            return None

        if event.kind == HUB_KIND:
            if event.subresource == "status":
                return None
            key = event.key
        else:
            key = event.owner_key(HUB_KIND)
            if key is None:
                return None

        self.enqueue(key)
        return key

    async def _watch_loop(self, subscription) -> None:
        async for event in subscription:
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(f"Error handling event: {e}", exc_info=True)

    async def resync(self) -> int:
        """Enqueue every Hub in the store. Returns the number of Hubs."""
        keys = await self.store.list_hub_keys()
        for key in keys:
            self.enqueue(key)
        return len(keys)

    async def _resync_loop(self) -> None:
        while self.running:
            try:
                count = await self.resync()
                logger.debug(f"Resync enqueued {count} Hub(s)")
                delay = self.reconcile_interval
            except Exception as e:
                logger.error(f"Error in resync loop: {e}", exc_info=True)
                delay = min(10, self.reconcile_interval)

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    # ==================== Workers ====================

    async def _worker(self, worker_id: int) -> None:
        while self.running:
            key = await self._queue.get()
            if key is None:
                break

            self._queued.discard(key)
            self._processing.add(key)
            try:
                await self.process(key)
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.enqueue(key)

    def _next_backoff(self, key: ObjectKey) -> float:
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return compute_backoff(
            failures,
            self.config.backoff_base_delay,
            self.config.backoff_max_delay,
            self.config.backoff_jitter_factor,
        )

    async def process(self, key: ObjectKey) -> Optional[float]:
        """
        Reconcile one key and schedule any follow-up.

        Returns:
            Seconds until the key is retried, or None when it is done
        """
        log = request_logger(key, logger)
        start_time = time.monotonic()

        try:
            result = await self.reconciler.reconcile(key, log)
        except HubError as e:
            if not e.retryable:
                log.warning(f"Dropping reconciliation: {e}")
                self._failures.pop(key, None)
                return None
            delay = self._next_backoff(key)
            log.error(f"Reconciliation failed, retrying in {delay:.1f}s: {e}")
            self.enqueue_after(key, delay)
            return delay
        except Exception as e:
            delay = self._next_backoff(key)
            log.error(
                f"Unexpected reconciliation error, retrying in {delay:.1f}s: {e}",
                exc_info=True,
            )
            self.enqueue_after(key, delay)
            return delay

        duration_seconds = time.monotonic() - start_time
        log.debug(f"Reconciliation finished in {duration_seconds:.3f}s")

        delay = None
        if result.requeue_after:
            self._failures.pop(key, None)
            delay = result.requeue_after
        elif result.requeue:
            delay = self._next_backoff(key)
        else:
            self._failures.pop(key, None)

        if delay is not None:
            self.enqueue_after(key, delay)

        if self._event_bus:
            await self._event_bus.publish(
                ObjectEvent(
                    event_type=EventType.RECONCILED,
                    kind=HUB_KIND,
                    namespace=key.namespace,
                    name=key.name,
                )
            )
        return delay
