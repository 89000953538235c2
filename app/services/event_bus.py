from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List


Handler = Callable[[dict[str, Any]], None]


class EventBus:
    """Synchronous in-process pub/sub. A failing handler never affects the emitter or other handlers."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._logger = logging.getLogger(__name__)

    def emit(self, event_name: str, payload: dict[str, Any]) -> int:
        handlers = list(self._handlers.get(event_name, []))
        if not handlers:
            self._logger.debug("EventBus: no handlers for %s", event_name)
            return 0
        delivered = 0
        for handler in handlers:
            try:
                handler(payload)
                delivered += 1
            except Exception:
                self._logger.exception("EventBus handler failed for %s", event_name)
        return delivered

    def subscribe(self, event_name: str, handler: Handler) -> Callable[[], None]:
        self._handlers[event_name].append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers.get(event_name, []):
                self._handlers[event_name].remove(handler)

        return _unsubscribe


event_bus = EventBus()
