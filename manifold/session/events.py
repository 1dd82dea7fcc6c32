"""Session events and a small in-process pub/sub hub."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from manifold.session.models import SessionStatus

EventHandler = Callable[[object], None]

STATUS = "agent:status"
OUTPUT = "agent:output"
EXIT = "agent:exit"
DIRS_CHANGED = "agent:dirs-changed"


@dataclass(frozen=True)
class SessionStatusChanged:
    session_id: str
    status: SessionStatus


@dataclass(frozen=True)
class SessionOutput:
    """Raw PTY chunk, ANSI sequences included."""

    session_id: str
    data: str


@dataclass(frozen=True)
class SessionExited:
    session_id: str
    code: Optional[int]


@dataclass(frozen=True)
class SessionDirsChanged:
    session_id: str
    additional_dirs: tuple[str, ...]


class EventHub:
    """Simple in-process pub/sub for session consumers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        self._handlers[event_name].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event_name: str, payload: object) -> None:
        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception(f"[session] {event_name} handler failed")
