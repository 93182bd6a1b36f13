"""Engagement event client.

Built per request and passed to whoever emits events. Events are buffered
and written to the ``storyflow.analytics`` logger; ``close()`` flushes
whatever is left.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger("storyflow.analytics")


class EventType(str, Enum):
    STORY_STARTED = "story_started"
    CHOICE_MADE = "choice_made"
    STORY_COMPLETED = "story_completed"
    ENDING_DISCOVERED = "ending_discovered"


class AnalyticsClient:
    def __init__(self, session_id: str | None = None, user_id: str | None = None):
        self.session_id = session_id
        self.user_id = user_id
        self.events: list[dict[str, Any]] = []
        self._started = False

    def start(self, session_id: str | None = None, user_id: str | None = None) -> None:
        if session_id is not None:
            self.session_id = session_id
        if user_id is not None:
            self.user_id = user_id
        self._started = True

    def track(self, event_type: EventType, **metadata: Any) -> None:
        if not self._started:
            self.start()
        event = {
            "event_type": event_type.value,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": metadata,
        }
        self.events.append(event)

    def flush(self) -> list[dict[str, Any]]:
        flushed, self.events = self.events, []
        for event in flushed:
            logger.info("%s %s", event["event_type"], event["metadata"])
        return flushed

    def close(self) -> None:
        self.flush()
        self._started = False


async def get_analytics():
    """FastAPI dependency: one client per request, flushed when it ends."""
    client = AnalyticsClient()
    client.start()
    try:
        yield client
    finally:
        client.close()
