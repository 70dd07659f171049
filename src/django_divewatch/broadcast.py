"""In-process publish/subscribe of status snapshots.

Every snapshot message is complete, so a slow subscriber may lose old
messages without losing state: when its queue is full the oldest message is
dropped to make room.

Message shapes:
    {"type": "timer:tick", "snapshot": {...}}
    {"type": "alert:warning", "cart": {...}, "event": {...}}
"""

import logging
import queue
import threading
from typing import Any, Callable, Dict, List, Optional

from .conf import get_subscriber_queue_size

logger = logging.getLogger(__name__)

TICK = "timer:tick"
ALERT_PREFIX = "alert:"


class Subscription:
    """A subscriber's bounded inbox, optionally forwarding to a callback."""

    def __init__(self, publisher: "SnapshotPublisher", maxsize: int, callback: Optional[Callable] = None):
        self._publisher = publisher
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.callback = callback
        self.dropped = 0

    def deliver(self, message: Dict[str, Any]) -> None:
        while True:
            try:
                self._queue.put_nowait(message)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass
        if self.callback is not None:
            self.callback(message)

    def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Next message; raises queue.Empty after timeout."""
        return self._queue.get(timeout=timeout)

    def get_nowait(self) -> Dict[str, Any]:
        return self._queue.get_nowait()

    def drain(self) -> List[Dict[str, Any]]:
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages

    def close(self) -> None:
        self._publisher.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class SnapshotPublisher:
    """Fan-out of messages to every current subscriber."""

    def __init__(self, maxsize: int = None):
        self.maxsize = maxsize or get_subscriber_queue_size()
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()
        self.last_snapshot: Optional[Dict[str, Any]] = None

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, callback: Optional[Callable] = None) -> Subscription:
        """Register a subscriber. It immediately receives the last snapshot."""
        subscription = Subscription(self, self.maxsize, callback)
        with self._lock:
            self._subscribers.append(subscription)
            last = self.last_snapshot
        if last is not None:
            self._deliver(subscription, last)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(self, message: Dict[str, Any]) -> None:
        """Send a message to all subscribers. Never raises."""
        with self._lock:
            if "snapshot" in message:
                self.last_snapshot = message
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            self._deliver(subscription, message)

    def publish_snapshot(self, reason: str, snapshot: Dict[str, Any]) -> None:
        self.publish({"type": reason, "snapshot": snapshot})

    def publish_alert(self, level: str, cart: Dict[str, Any], event: Dict[str, Any]) -> None:
        self.publish({"type": f"{ALERT_PREFIX}{level}", "cart": cart, "event": event})

    def _deliver(self, subscription: Subscription, message: Dict[str, Any]) -> None:
        try:
            subscription.deliver(message)
        except Exception:
            logger.exception("Subscriber failed to receive %s", message.get("type"))
