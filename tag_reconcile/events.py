from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Optional

from .models import SourceType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResultsUpdated:
    path: Path
    source: SourceType


@dataclass(frozen=True, slots=True)
class ComparisonUpdated:
    path: Path
    description: str


@dataclass(frozen=True, slots=True)
class ComparisonFocusRequested:
    path: Path


Handler = Callable[[object], None]


class EventBus:
    """Synchronous publish/subscribe hub for core domain events.

    Handlers run on the publishing thread; a failing handler is logged and
    does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._handlers: dict[type, list[Handler]] = {}

    def subscribe(self, event_type: type, handler: Handler) -> Callable[[], None]:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: object) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, type(event).__name__)


def publish(bus: Optional[EventBus], event: object) -> None:
    if bus is not None:
        bus.publish(event)
