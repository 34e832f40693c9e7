"""Event emission for modem sessions.

The engine reports what it is doing through an injected EventEmitter
instead of printing. Formatting (console output, hex dumps) belongs to
subscribers such as the CLI's console observer.

Event Types:
    - command_sent: A command line was written to the modem
    - line_received: A text line was consumed from the receive buffer
    - chunk_progress: A binary segment was written to the download sink
    - retry: A chunk request is being re-issued at the same offset
    - error: A step failed with a typed error
    - state_transition: The update monitor changed state
    - update_progress: The update monitor saw a new progress value
    - step_started / step_completed: Session driver step boundaries

Example:
    >>> from fotalink.modem.events import EventEmitter
    >>> emitter = EventEmitter()
    >>> emitter.subscribe("line_received", lambda d: print(d["line"]))
    >>> emitter.emit("line_received", {"line": "OK"})
    OK
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


# =============================================================================
# Event Type Constants
# =============================================================================

EVENT_COMMAND_SENT = "command_sent"
EVENT_LINE_RECEIVED = "line_received"
EVENT_CHUNK_PROGRESS = "chunk_progress"
EVENT_RETRY = "retry"
EVENT_ERROR = "error"
EVENT_STATE_TRANSITION = "state_transition"
EVENT_UPDATE_PROGRESS = "update_progress"
EVENT_STEP_STARTED = "step_started"
EVENT_STEP_COMPLETED = "step_completed"

# Wildcard for subscribing to all events
EVENT_WILDCARD = "*"

ALL_EVENT_TYPES: Set[str] = {
    EVENT_COMMAND_SENT,
    EVENT_LINE_RECEIVED,
    EVENT_CHUNK_PROGRESS,
    EVENT_RETRY,
    EVENT_ERROR,
    EVENT_STATE_TRANSITION,
    EVENT_UPDATE_PROGRESS,
    EVENT_STEP_STARTED,
    EVENT_STEP_COMPLETED,
}


@dataclass
class Event:
    """Event data structure.

    Attributes:
        event_type: Type of the event.
        timestamp: When the event occurred.
        data: Event-specific data payload.
    """

    event_type: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Subscription:
    """Event subscription record."""

    subscription_id: str
    event_type: str
    callback: Callable[[Dict[str, Any]], None]


class EventEmitter:
    """Thread-safe pub/sub for session events.

    Events are delivered synchronously in the emitting thread. A failing
    subscriber is logged and skipped; it never breaks the protocol flow.
    Subscriptions may be added or removed from any thread.

    Example:
        >>> emitter = EventEmitter()
        >>> sub_id = emitter.subscribe("*", lambda d: None)
        >>> emitter.emit("retry", {"offset": 100})
        >>> emitter.unsubscribe(sub_id)
        True
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._subscriptions_lock = threading.Lock()

    def subscribe(
        self,
        event_type: str,
        callback: Callable[[Dict[str, Any]], None],
    ) -> str:
        """Subscribe to an event type.

        Args:
            event_type: Event type to subscribe to, or "*" for all events.
            callback: Function to call with the event data dict.

        Returns:
            Subscription ID that can be used to unsubscribe.
        """
        subscription_id = str(uuid.uuid4())
        subscription = Subscription(
            subscription_id=subscription_id,
            event_type=event_type,
            callback=callback,
        )

        with self._subscriptions_lock:
            self._subscriptions.setdefault(event_type, []).append(subscription)

        logger.debug(
            "Added subscription %s for event type '%s'",
            subscription_id,
            event_type,
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription.

        Returns:
            True if the subscription was found and removed.
        """
        with self._subscriptions_lock:
            for subscriptions in self._subscriptions.values():
                for sub in subscriptions:
                    if sub.subscription_id == subscription_id:
                        subscriptions.remove(sub)
                        return True
        return False

    def emit(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Deliver an event to matching and wildcard subscribers."""
        event = Event(event_type=event_type, data=data or {})
        event_data = {
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            **event.data,
        }

        with self._subscriptions_lock:
            subscribers = list(self._subscriptions.get(event_type, []))
            subscribers.extend(self._subscriptions.get(EVENT_WILDCARD, []))

        for subscription in subscribers:
            try:
                subscription.callback(event_data)
            except Exception as e:
                logger.exception(
                    "Error in event subscriber %s for '%s': %s",
                    subscription.subscription_id,
                    event_type,
                    e,
                )
