from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol


class TransportState(Enum):
    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


class TransportEvent(str, Enum):
    OPEN = "open"
    ERROR = "error"
    CLOSE = "close"
    MESSAGE = "message"


@dataclass(frozen=True)
class CloseInfo:
    code: int | None = None
    reason: str = ""


Listener = Callable[[Any], None]


class TransportPort(Protocol):
    @property
    def state(self) -> TransportState: ...
    def send(self, frame: str | bytes) -> None: ...
    def close(self) -> None: ...
    async def wait_closed(self) -> None: ...
    def add_listener(self, event: TransportEvent, handler: Listener) -> None: ...
    def remove_listener(self, event: TransportEvent, handler: Listener) -> None: ...


TransportFactory = Callable[[str], Awaitable[TransportPort]]
