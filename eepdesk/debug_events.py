"""
Debug event log

Every API call reports what happened (method, endpoint, outcome, duration)
to an in-process event log. Listeners are notified synchronously and their
failures are contained, so reporting can never change the outcome of the
call that produced the event.

Usage:
    events = DebugEventLog()
    events.subscribe(lambda event: print(event.message))

    events.log_event("[GET] /tasks/ succeeded (200)", DebugEventType.API_SUCCESS, duration_ms=42.0)
    events.unread_error_count
"""

import itertools
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, List, Optional

from eepdesk.logging_config import get_logger

logger = get_logger(__name__)


class DebugEventType(str, Enum):
    """Types of debug events"""
    API_SUCCESS = "api_success"
    API_ERROR = "api_error"
    ERROR = "error"
    INFO = "info"


@dataclass
class DebugEvent:
    """A debug event"""
    id: int
    message: str
    type: DebugEventType
    timestamp: datetime = field(default_factory=datetime.now)
    duration_ms: Optional[float] = None
    method: Optional[str] = None
    endpoint: Optional[str] = None
    status: Optional[int] = None
    is_read: bool = False

    @property
    def is_error(self) -> bool:
        return self.type in (DebugEventType.API_ERROR, DebugEventType.ERROR)


Listener = Callable[[DebugEvent], None]


class DebugEventLog:
    """
    Bounded, newest-first log of debug events with listeners.
    """

    def __init__(self, max_events: int = 100):
        self._events: Deque[DebugEvent] = deque(maxlen=max_events)
        self._listeners: List[Listener] = []
        self._ids = itertools.count(1)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def log_event(
        self,
        message: str,
        event_type: DebugEventType = DebugEventType.INFO,
        duration_ms: Optional[float] = None,
        method: Optional[str] = None,
        endpoint: Optional[str] = None,
        status: Optional[int] = None,
    ) -> DebugEvent:
        event = DebugEvent(
            id=next(self._ids),
            message=message,
            type=event_type,
            duration_ms=duration_ms,
            method=method,
            endpoint=endpoint,
            status=status,
        )
        self._events.appendleft(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.debug(f"Debug event listener failed: {e}", exc_info=True)

        return event

    @property
    def events(self) -> List[DebugEvent]:
        """Newest first"""
        return list(self._events)

    @property
    def unread_error_count(self) -> int:
        return sum(1 for event in self._events if event.is_error and not event.is_read)

    @property
    def has_unread_errors(self) -> bool:
        return self.unread_error_count > 0

    def mark_all_as_read(self) -> None:
        for event in self._events:
            event.is_read = True

    def clear(self) -> None:
        self._events.clear()
