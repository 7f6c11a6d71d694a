"""Publish/subscribe feed for notifications and relayed events."""

import logging
import threading
from typing import Any, Callable, Optional
from uuid import uuid4

from state_machine.models import AppNotification, utcnow

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


def make_event(
    event_type: str,
    message: str,
    data: Optional[Any] = None,
) -> dict[str, Any]:
    """Build an event in the broadcast wire shape."""
    return {
        "type": event_type,
        "message": message,
        "data": data,
        "timestamp": utcnow().isoformat(),
    }


class NotificationFeed:
    """
    Thread-safe in-process event feed.

    Subscribers receive every event published after they subscribe.
    A failing subscriber is dropped and does not affect the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, Listener] = {}
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener.
        """
        token = str(uuid4())
        with self._lock:
            self._listeners[token] = listener
        logger.debug(f"Feed subscriber added. Total: {self.subscriber_count}")

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)
            logger.debug(f"Feed subscriber removed. Total: {self.subscriber_count}")

        return unsubscribe

    def publish(self, event: dict[str, Any]) -> int:
        """
        Deliver an event to every subscriber.

        Returns:
            Number of subscribers that received the event.
        """
        with self._lock:
            listeners = list(self._listeners.items())

        delivered = 0
        for token, listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping feed subscriber after error: {e}")
                with self._lock:
                    self._listeners.pop(token, None)
        return delivered

    def publish_notification(self, notification: AppNotification) -> int:
        """Publish a stored notification."""
        return self.publish(
            make_event(
                "notification",
                notification.message,
                notification.model_dump(mode="json"),
            )
        )
