"""
Object Events - In-memory pub/sub for store change notifications.

The store forwards PostgreSQL notifications here; the controller subscribes
and turns them into reconciliation requests, much like an informer feeding
a work queue.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from hub.base import ObjectKey

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of object events."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    RECONCILED = "RECONCILED"


_OPERATIONS = {
    "INSERT": EventType.CREATED,
    "UPDATE": EventType.MODIFIED,
    "DELETE": EventType.DELETED,
}


@dataclass
class ObjectEvent:
    """A change to one stored object."""

    event_type: EventType
    kind: str
    namespace: str
    name: str
    owner_kind: Optional[str] = None
    owner_name: Optional[str] = None
    subresource: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    def owner_key(self, owner_kind: str) -> Optional[ObjectKey]:
        """Key of the controlling owner if it is of ``owner_kind``."""
        if self.owner_kind != owner_kind or not self.owner_name:
            return None
        return ObjectKey(namespace=self.namespace, name=self.owner_name)

    @classmethod
    def from_notification(cls, payload: str) -> "ObjectEvent":
        """
        Build an event from a ``hub_objects`` NOTIFY payload.

        Raises:
            ValueError: If the payload is not valid JSON or names an
                unknown operation
            KeyError: If a required field is missing
        """
        data = json.loads(payload)
        op = data["op"]
        if op not in _OPERATIONS:
            raise ValueError(f"Unknown operation: {op}")
        return cls(
            event_type=_OPERATIONS[op],
            kind=data["kind"],
            namespace=data["namespace"],
            name=data["name"],
            owner_kind=data.get("owner_kind"),
            owner_name=data.get("owner_name"),
            subresource=data.get("subresource"),
        )


class EventSubscription:
    """
    Async iterator over one subscriber's queue.

    A ``None`` sentinel ends iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[ObjectEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[ObjectEvent]:
        return self

    async def __anext__(self) -> ObjectEvent:
        while True:
            event = await self._queue.get()

            if event is None:
                raise StopAsyncIteration

            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    In-memory pub/sub for object events.

    Each subscriber gets a bounded queue. Publishing never blocks: when a
    subscriber's queue is full the event is dropped for that subscriber,
    and the controller's periodic resync recovers anything missed.
    """

    def __init__(self, queue_size: int = 1024):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ObjectEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for "
                    f"{event.kind} {event.key}: subscriber {subscriber_id} queue full"
                )

    async def subscribe(
        self,
        filter_fn: Optional[Callable[[ObjectEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers[subscriber_id] = queue

        logger.debug(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber; its iterator terminates."""
        async with self._lock:
            queue = self._subscribers.pop(subscriber_id, None)

        if queue is not None:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                # Drain one slot so the sentinel always lands.
                queue.get_nowait()
                queue.put_nowait(None)
            logger.debug(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        return len(self._subscribers)
