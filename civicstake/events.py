"""In-process change notification.

The core emits an event after each committed stake, answer, vote and
finalization. Transport (websocket, queue, webhook) is left to subscribers.
"""

import inspect
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class CoreEvent(BaseModel):
    """A committed change in the core."""
    type: str  # stake | question_created | answer | vote | finalize | flag
    entity_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[CoreEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Fan-out to sync or async subscribers.

    A failing subscriber is logged and skipped: the mutation it reports has
    already committed.
    """

    def __init__(self, history_size: int = 1000) -> None:
        self._subscribers: List[Subscriber] = []
        self.history: Deque[CoreEvent] = deque(maxlen=history_size)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    async def emit(
        self,
        type: str,
        entity_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> CoreEvent:
        event = CoreEvent(type=type, entity_id=entity_id, payload=payload or {})
        self.history.append(event)
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event subscriber failed for %s %s", type, entity_id)
        return event
