"""In-process event fan-out for session streams."""

import logging
from typing import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, BaseModel], None]


class EventBus:
    """Delivers (session_id, event) pairs to every subscriber, synchronously."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, session_id: str, event: BaseModel) -> None:
        for callback in list(self._subscribers):
            try:
                callback(session_id, event)
            except Exception:
                # One broken subscriber must not starve the others
                logger.exception("Event subscriber failed for session %s", session_id)
