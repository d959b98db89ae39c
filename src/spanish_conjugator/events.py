"""In-process domain event bus for progress notifications."""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

CHALLENGE_COMPLETED = "challenge_completed"
EXPERT_MODE_CHANGED = "expert_mode_changed"
ATTEMPT_RECORDED = "attempt_recorded"

Handler = Callable[[dict[str, Any]], None]

_handlers: dict[str, list[Handler]] = {}


def subscribe(event: str, handler: Handler) -> Callable[[], None]:
    """Register ``handler`` for ``event``; returns a callable that unsubscribes it."""
    if not callable(handler):
        raise TypeError("Event handler must be callable")
    _handlers.setdefault(event, []).append(handler)

    def unsubscribe() -> None:
        handlers = _handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    return unsubscribe


def emit(event: str, payload: dict[str, Any] | None = None) -> int:
    """Deliver ``payload`` to every handler of ``event``. Returns the number notified.

    A failing handler is logged and does not stop delivery to the others.
    """
    delivered = 0
    for handler in list(_handlers.get(event, ())):
        try:
            handler(dict(payload or {}))
        except Exception:
            logger.exception("Handler for %s failed", event)
            continue
        delivered += 1
    return delivered


def clear_handlers() -> None:
    _handlers.clear()


__all__ = [
    "ATTEMPT_RECORDED",
    "CHALLENGE_COMPLETED",
    "EXPERT_MODE_CHANGED",
    "clear_handlers",
    "emit",
    "subscribe",
]
