import logging
import threading
from collections import deque
from typing import Iterable, Optional

from posthog_core.event import EventRecord


class EventQueue(object):
    """
    Ordered, thread-safe buffer of records waiting for delivery.

    Every method takes the queue's lock, so `put`, `take` and `requeue` are
    each atomic with respect to one another.
    """

    log = logging.getLogger("posthog_core")

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._items: deque[EventRecord] = deque()
        self._lock = threading.Lock()

    def put(self, record: EventRecord) -> Optional[int]:
        """Append `record` at the tail and return the new length, or None if the queue is full."""
        with self._lock:
            if len(self._items) >= self.max_size:
                self.log.warning(
                    "event queue is full (%d), dropping %s", self.max_size, record.name
                )
                return None
            self._items.append(record)
            return len(self._items)

    def take(self, limit: Optional[int] = None) -> list[EventRecord]:
        """Remove and return up to `limit` of the oldest records (all of them by default)."""
        with self._lock:
            if limit is None or limit >= len(self._items):
                items = list(self._items)
                self._items.clear()
                return items
            return [self._items.popleft() for _ in range(limit)]

    def requeue(self, records: Iterable[EventRecord]):
        """
        Put records that failed delivery back at the head, in their original order.

        Requeued records were already accepted once, so they are restored even
        when that takes the queue past `max_size`.
        """
        with self._lock:
            self._items.extendleft(reversed(list(records)))

    def clear(self) -> int:
        with self._lock:
            size = len(self._items)
            self._items.clear()
            return size

    def snapshot(self) -> list[EventRecord]:
        with self._lock:
            return list(self._items)

    def __len__(self):
        with self._lock:
            return len(self._items)
