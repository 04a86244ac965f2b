"""Audio Dedup Pipeline - Live similarity notifications.

NotificationHub is the process-scoped registry of live subscribers, keyed by
audio ID. It is empty at startup, filled by subscribe() when an SSE client
connects, and drained by unsubscribe() when the client goes away.

Threading model:
- subscribe()/unsubscribe() run on the API event loop.
- broadcast() runs on analysis worker threads (or on the loop itself).
- The registry is guarded by a threading.Lock. broadcast() copies the
  subscriber lists under the lock and delivers outside it, so concurrent
  removals never disturb a broadcast in flight.
- Each Subscription owns a bounded asyncio.Queue on its own event loop.
  Delivery goes through loop.call_soon_threadsafe(), so a broadcast never
  waits on a slow subscriber. A full queue drops that one event; a closed
  subscription or closed loop is permanent and the subscription is removed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from audiodedup.config import SUBSCRIBER_QUEUE_SIZE

logger = logging.getLogger(__name__)


class Subscription:
    """One live listener for one audio ID."""

    def __init__(self, audio_id: str, loop: asyncio.AbstractEventLoop, max_queue: int):
        self.audio_id = audio_id
        self.loop = loop
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_queue)
        self.closed = False
        self.dropped = 0

    def _offer(self, payload: dict[str, Any]) -> None:
        # Runs on self.loop
        if self.closed:
            return
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Subscriber queue full for audio_id=%s, dropped event (total dropped=%d)",
                self.audio_id,
                self.dropped,
            )

    def deliver(self, payload: dict[str, Any]) -> None:
        """Schedule delivery on the subscriber's loop without blocking.

        Raises:
            RuntimeError: If the subscriber's event loop is closed.
        """
        self.loop.call_soon_threadsafe(self._offer, payload)

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Wait for the next event. Returns None on timeout."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self.closed = True


class NotificationHub:
    """Thread-safe registry of subscriptions with best-effort fan-out."""

    def __init__(self, max_queue: int = SUBSCRIBER_QUEUE_SIZE):
        self._max_queue = max_queue
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = {}

    def subscribe(
        self, audio_id: str, loop: asyncio.AbstractEventLoop | None = None
    ) -> Subscription:
        """Register a listener for audio_id.

        Args:
            audio_id: Audio file to listen to.
            loop: Event loop that will consume the events. Defaults to the
                running loop.

        Returns:
            The subscription handle.
        """
        loop = loop or asyncio.get_running_loop()
        subscription = Subscription(audio_id, loop, self._max_queue)
        with self._lock:
            self._subscribers.setdefault(audio_id, []).append(subscription)
            active = len(self._subscribers[audio_id])
        logger.info(
            "SSE listener subscribed to similarity warnings: audio_id=%s active=%d",
            audio_id,
            active,
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription. Removing twice is a no-op."""
        subscription.close()
        if self._remove(subscription):
            logger.info("SSE listener disconnected: audio_id=%s", subscription.audio_id)

    def _remove(self, subscription: Subscription) -> bool:
        with self._lock:
            bucket = self._subscribers.get(subscription.audio_id)
            if not bucket or subscription not in bucket:
                return False
            bucket.remove(subscription)
            if not bucket:
                del self._subscribers[subscription.audio_id]
            return True

    def _snapshot(self, audio_id: str) -> list[Subscription]:
        with self._lock:
            return list(self._subscribers.get(audio_id, ()))

    def broadcast(self, audio_id_a: str, audio_id_b: str, payload: dict[str, Any]) -> int:
        """Deliver payload to every subscriber of either audio ID.

        A subscriber registered under both ids receives the event once per
        registration. Failures are logged per subscriber and never raised.

        Returns:
            Number of deliveries scheduled.
        """
        delivered = 0
        for audio_id in (audio_id_a, audio_id_b):
            for subscription in self._snapshot(audio_id):
                if subscription.closed:
                    self._remove(subscription)
                    continue
                try:
                    subscription.deliver(payload)
                    delivered += 1
                except RuntimeError:
                    # Event loop closed: the connection is gone for good
                    logger.info(
                        "Removing subscriber with closed event loop: audio_id=%s", audio_id
                    )
                    subscription.close()
                    self._remove(subscription)
                except Exception:
                    logger.error(
                        "Failed to send notification to subscriber of audio_id=%s",
                        audio_id,
                        exc_info=True,
                    )

        logger.info(
            "Similarity warning notification broadcast: %s <-> %s, deliveries=%d",
            audio_id_a,
            audio_id_b,
            delivered,
        )
        return delivered

    def subscriber_count(self, audio_id: str | None = None) -> int:
        """Live subscriptions for one audio ID, or in total."""
        with self._lock:
            if audio_id is not None:
                return len(self._subscribers.get(audio_id, ()))
            return sum(len(bucket) for bucket in self._subscribers.values())

    def close_all(self) -> int:
        """Close and drop every subscription (process shutdown)."""
        with self._lock:
            subscriptions = [s for bucket in self._subscribers.values() for s in bucket]
            self._subscribers.clear()
        for subscription in subscriptions:
            subscription.close()
        return len(subscriptions)


# Process-scoped hub
_hub = NotificationHub()


def get_notification_hub() -> NotificationHub:
    return _hub


def set_notification_hub(hub: NotificationHub) -> None:
    """Replace the process-scoped hub (tests)."""
    global _hub
    _hub = hub
