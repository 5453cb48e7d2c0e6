"""Per-search event channel.

Delivery (websockets, push, ...) is someone else's job; publishers here
only define the contract and two local sinks.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

STATUS_UPDATED = "status.updated"
SCORING_PROGRESS = "scoring.progress"
SCORING_COMPLETED = "scoring.completed"
SEARCH_COMPLETED = "search.completed"
SEARCH_FAILED = "search.failed"


def search_channel(search_id: str) -> str:
    return f"search:{search_id}"


class EventPublisher(ABC):
    """Sink for status and score-update events."""

    @abstractmethod
    def emit(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        """Publish one event. Must not raise into the caller's pipeline."""

    def status_updated(
        self, search_id: str, status: str, message: str, progress: int
    ) -> None:
        self.emit(
            search_channel(search_id),
            STATUS_UPDATED,
            {"status": status, "message": message, "progress": progress},
        )


class LoggingEventPublisher(EventPublisher):
    """Writes events to the log. Default for CLI runs."""

    def emit(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        logger.info("[%s] %s %s", channel, event, payload)


class RecordedEvent(BaseModel):
    channel: str
    event: str
    payload: dict[str, Any]


class InMemoryEventPublisher(EventPublisher):
    """Keeps every event in order; handy for tests and local inspection."""

    def __init__(self) -> None:
        self.events: list[RecordedEvent] = []

    def emit(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        self.events.append(RecordedEvent(channel=channel, event=event, payload=dict(payload)))

    def named(self, event: str) -> list[RecordedEvent]:
        return [e for e in self.events if e.event == event]
