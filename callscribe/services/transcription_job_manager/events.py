"""
Transcription lifecycle events.

Subscribers are async (or plain) callables registered on an EventBus; each
published event is delivered to every subscriber in registration order and
kept in a bounded history for diagnostics.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from callscribe.utils import get_current_timestamp_est

logger = logging.getLogger(__name__)


class TranscriptionEventType(enum.Enum):
    STARTED = "transcription/started"
    PROGRESS = "transcription/progress"
    COMPLETED = "transcription/completed"
    FAILED = "transcription/failed"
    CANCELLED = "transcription/cancelled"


@dataclass
class TranscriptionEvent:
    event_type: TranscriptionEventType
    call_id: str
    job_id: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=get_current_timestamp_est)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.event_type.value,
            "call_id": self.call_id,
            "job_id": self.job_id,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
        }


EventSubscriber = Callable[[TranscriptionEvent], Any]


class EventBus:
    """In-process publish/subscribe for transcription events."""

    def __init__(self, history_size: int = 500):
        self._subscribers: list[EventSubscriber] = []
        self._history: deque[TranscriptionEvent] = deque(maxlen=history_size)

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def publish(self, event: TranscriptionEvent) -> None:
        """
        Record an event and deliver it to every subscriber.

        A failing subscriber is logged and does not stop delivery to the others.
        """
        self._history.append(event)

        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Event subscriber failed for {event.event_type.value}: {e}")

    def history(
        self, call_id: str | None = None, event_type: TranscriptionEventType | None = None
    ) -> list[TranscriptionEvent]:
        """Get recorded events, optionally filtered by call and type."""
        return [
            event
            for event in self._history
            if (call_id is None or event.call_id == call_id)
            and (event_type is None or event.event_type == event_type)
        ]
