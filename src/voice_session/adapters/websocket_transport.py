import asyncio
import logging
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidURI
from websockets.uri import parse_uri

from voice_session.domain.errors import TransportUnavailableError
from voice_session.ports.transport import (
    CloseInfo,
    Listener,
    TransportEvent,
    TransportFactory,
    TransportPort,
    TransportState,
)

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006
DRAIN_TIMEOUT_SECONDS = 1.0


class WebsocketTransport:
    def __init__(self, url: str, open_timeout: float = 10.0, **connect_options: Any) -> None:
        parse_uri(url)
        self._url = url
        self._open_timeout = open_timeout
        self._connect_options = {"ping_interval": None, **connect_options}
        self._state = TransportState.CONNECTING
        self._listeners: dict[TransportEvent, list[Listener]] = {event: [] for event in TransportEvent}
        self._outbox: asyncio.Queue[str | bytes] = asyncio.Queue()
        self._connection: ClientConnection | None = None
        self._close_requested = False
        self._closer: asyncio.Task | None = None
        self._task = asyncio.create_task(self._run())

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    def add_listener(self, event: TransportEvent, handler: Listener) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: TransportEvent, handler: Listener) -> None:
        if handler in self._listeners[event]:
            self._listeners[event].remove(handler)

    def send(self, frame: str | bytes) -> None:
        if self._state is not TransportState.OPEN:
            logger.debug("Dropping frame, transport is %s", self._state.name)
            return
        self._outbox.put_nowait(frame)

    def close(self) -> None:
        if self._state in (TransportState.CLOSING, TransportState.CLOSED):
            return
        self._close_requested = True
        self._state = TransportState.CLOSING
        if self._connection is not None:
            self._closer = asyncio.create_task(self._close_after_drain())

    async def wait_closed(self) -> None:
        await asyncio.shield(self._task)

    async def _run(self) -> None:
        try:
            self._connection = await connect(
                self._url,
                open_timeout=self._open_timeout,
                **self._connect_options,
            )
        except Exception as exc:
            logger.warning("Connection to %s failed: %s", self._url, exc)
            self._state = TransportState.CLOSED
            self._dispatch(TransportEvent.ERROR, exc)
            self._dispatch(TransportEvent.CLOSE, CloseInfo(code=ABNORMAL_CLOSURE, reason=str(exc)))
            return

        if self._close_requested:
            await self._connection.close()
            self._state = TransportState.CLOSED
            self._dispatch(TransportEvent.CLOSE, CloseInfo(code=self._connection.close_code))
            return

        self._state = TransportState.OPEN
        logger.info("Connected to %s", self._url)
        self._dispatch(TransportEvent.OPEN, None)

        writer = asyncio.create_task(self._write_loop())
        try:
            async for message in self._connection:
                self._dispatch(TransportEvent.MESSAGE, message)
        except ConnectionClosedError as exc:
            self._dispatch(TransportEvent.ERROR, exc)
        finally:
            writer.cancel()
            self._state = TransportState.CLOSED

        info = CloseInfo(
            code=self._connection.close_code,
            reason=self._connection.close_reason or "",
        )
        logger.info("Connection closed (code=%s reason=%s)", info.code, info.reason or "-")
        self._dispatch(TransportEvent.CLOSE, info)

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self._connection.send(frame)
            except ConnectionClosed:
                logger.debug("Send failed, connection closed")
                return
            finally:
                self._outbox.task_done()

    async def _close_after_drain(self) -> None:
        try:
            await asyncio.wait_for(self._outbox.join(), timeout=DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Closing with %d unsent frame(s)", self._outbox.qsize())
        await self._connection.close()

    def _dispatch(self, event: TransportEvent, detail: Any) -> None:
        for handler in list(self._listeners[event]):
            try:
                handler(detail)
            except Exception:
                logger.exception("Transport %s listener failed", event.value)


async def create_transport(
    url: str,
    options: dict[str, Any] | None = None,
    fallback: TransportFactory | None = None,
) -> TransportPort:
    try:
        return WebsocketTransport(url, **(options or {}))
    except InvalidURI as exc:
        if fallback is None:
            raise TransportUnavailableError(f"No transport for {url}: {exc}") from exc
        logger.info("websockets cannot handle %s, using fallback transport", url)
    try:
        return await fallback(url)
    except Exception as exc:
        raise TransportUnavailableError(f"No transport for {url}: {exc}") from exc


def transport_factory(
    options: dict[str, Any] | None = None,
    fallback: TransportFactory | None = None,
) -> TransportFactory:
    async def factory(url: str) -> TransportPort:
        return await create_transport(url, options=options, fallback=fallback)

    return factory
