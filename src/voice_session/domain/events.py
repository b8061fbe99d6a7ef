import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from time import time
from typing import Any, ClassVar

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    READY = "ready"
    MIC_CONNECTING = "mic-connecting"
    MIC_OPEN = "mic-open"
    AMPLITUDE = "amplitude"
    TRANSCRIPTION = "transcription"
    ERROR = "error"
    SOCKET_MESSAGE = "socket-message"


@dataclass(frozen=True)
class DomainEvent:
    event: ClassVar[SessionEvent]
    timestamp: float = field(default_factory=time, kw_only=True)


@dataclass(frozen=True)
class Ready(DomainEvent):
    event = SessionEvent.READY


@dataclass(frozen=True)
class MicConnecting(DomainEvent):
    event = SessionEvent.MIC_CONNECTING
    connecting: bool = False


@dataclass(frozen=True)
class MicOpen(DomainEvent):
    event = SessionEvent.MIC_OPEN
    open: bool = False


@dataclass(frozen=True)
class Amplitude(DomainEvent):
    event = SessionEvent.AMPLITUDE
    value: float = 0.0


@dataclass(frozen=True)
class Transcription(DomainEvent):
    event = SessionEvent.TRANSCRIPTION
    text: str = ""
    delta: str | None = None


@dataclass(frozen=True)
class ErrorRaised(DomainEvent):
    event = SessionEvent.ERROR
    error: Any = None


@dataclass(frozen=True)
class SocketMessage(DomainEvent):
    event = SessionEvent.SOCKET_MESSAGE
    raw: Any = None
    parsed: Any = None


Handler = Callable[[DomainEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[SessionEvent, list[Handler]] = {name: [] for name in SessionEvent}

    def subscribe(self, event: SessionEvent | str, handler: Handler) -> Callable[[], None]:
        name = SessionEvent(event)
        self._handlers[name].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[name]:
                self._handlers[name].remove(handler)

        return unsubscribe

    def emit(self, payload: DomainEvent) -> None:
        for handler in list(self._handlers[payload.event]):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", payload.event.value)
