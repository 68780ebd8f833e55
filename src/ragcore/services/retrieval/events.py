from __future__ import annotations

from collections import defaultdict
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

RETRIEVAL_PROGRESS = "retrieval-progress"
RETRIEVAL_TELEMETRY = "retrieval-telemetry"

EventHandler = Callable[[dict[str, Any]], None]


class EventEmitter:
    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event_type, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("%s handler failed", event_type)

    def clear(self) -> None:
        self._handlers.clear()
