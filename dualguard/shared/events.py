"""
In-process publish/subscribe channel for client-wide signals.

The API client emits ``auth:signout`` when a session cannot be recovered and
``api:error`` for every surfaced API failure. The application wires one bus at
startup and hands it to the API client and to whatever consumes the signals.
Delivery is synchronous, in subscription order, with no replay.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

AUTH_SIGNOUT = "auth:signout"
API_ERROR = "api:error"

EventCallback = Callable[[Any], None]


class EventBus:
    """Synchronous event emitter keyed by event name."""

    def __init__(self):
        self._subscribers: Dict[str, List[EventCallback]] = {}

    def subscribe(self, event: str, callback: EventCallback) -> Callable[[], None]:
        """
        Register ``callback`` for ``event``.

        Returns:
            A function that removes the subscription; calling it twice is harmless.
        """
        self._subscribers.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> int:
        """
        Deliver ``payload`` to every subscriber of ``event``.

        A failing callback is logged and does not prevent delivery to the rest.

        Returns:
            Number of callbacks invoked
        """
        callbacks = list(self._subscribers.get(event, []))
        logger.debug(f"Emitting {event} to {len(callbacks)} subscriber(s)")

        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Error in {event} subscriber: {e}")

        return len(callbacks)

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(event, []))
