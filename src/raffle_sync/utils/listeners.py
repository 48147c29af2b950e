"""Fire-and-forget listener registry shared by the sync components."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List

from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Any], None]


class ListenerRegistry:
    """Maps event types to callbacks.

    A failing listener is logged and skipped; it never affects the emitter or
    the remaining listeners.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def add_listener(self, event_type: str, callback: Listener) -> None:
        self._listeners[event_type].append(callback)
        logger.debug("Adding listener for event_type=%s, callback=%s", event_type, callback)

    def remove_listener(self, event_type: str, callback: Listener) -> None:
        try:
            self._listeners[event_type].remove(callback)
        except ValueError:
            pass

    def emit(self, event_type: str, payload: Any = None) -> None:
        for callback in list(self._listeners.get(event_type, [])):
            try:
                callback(payload)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event_type, exc)
