"""In-process push channel delivering new notifications to the presentation layer"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

from paydesk.domain.models import NotificationEvent

Listener = Callable[[NotificationEvent], None]

logger = logging.getLogger(__name__)


class EventChannel:
    """
    Fan-out of NotificationEvent to subscribed listeners.

    A bounded buffer of recent events serves clients that poll instead of
    subscribing. A failing listener is logged and skipped; publishing never
    raises into the scheduler.
    """

    def __init__(self, buffer_size: int = 200):
        self._listeners: List[Listener] = []
        self._recent: Deque[NotificationEvent] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: NotificationEvent) -> None:
        with self._lock:
            self._recent.append(event)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Notification listener failed", extra={"notification_id": event.id})

    def recent(self, since_id: Optional[int] = None) -> List[NotificationEvent]:
        """Buffered events, oldest first; since_id filters to newer notification ids"""
        with self._lock:
            events = list(self._recent)
        if since_id is None:
            return events
        return [e for e in events if e.id > since_id]
