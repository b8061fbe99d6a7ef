import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from voice_session.domain.errors import TransportClosedError
from voice_session.domain.heartbeat import HeartbeatMonitor
from voice_session.domain.messages import encode_control
from voice_session.ports.transport import (
    CloseInfo,
    TransportEvent,
    TransportFactory,
    TransportPort,
    TransportState,
)

logger = logging.getLogger(__name__)

LIVE_STATES = (TransportState.OPEN, TransportState.CONNECTING)


class ConnectionRegistry:
    """Connection state shared by every session of one process."""

    def __init__(self) -> None:
        self.active: TransportPort | None = None
        self.pending: asyncio.Future | None = None

    def clear(self, transport: TransportPort | None) -> None:
        if transport is not None and self.active is transport:
            self.active = None


@dataclass
class ConnectionCallbacks:
    on_ready: Callable[[], None] = lambda: None
    on_message: Callable[[Any], None] = lambda raw: None
    on_error: Callable[[Any], None] = lambda error: None
    on_lost: Callable[[CloseInfo], None] = lambda info: None
    on_state_change: Callable[[], None] = lambda: None


async def wait_for_open(transport: TransportPort) -> None:
    if transport.state is TransportState.OPEN:
        return
    if transport.state in (TransportState.CLOSING, TransportState.CLOSED):
        raise TransportClosedError("Transport closed before opening")

    loop = asyncio.get_running_loop()
    opened: asyncio.Future[None] = loop.create_future()

    def on_open(_: Any) -> None:
        if not opened.done():
            opened.set_result(None)

    def on_failure(detail: Any) -> None:
        if not opened.done():
            opened.set_exception(TransportClosedError(f"Transport failed before opening: {detail}"))

    transport.add_listener(TransportEvent.OPEN, on_open)
    transport.add_listener(TransportEvent.ERROR, on_failure)
    transport.add_listener(TransportEvent.CLOSE, on_failure)
    try:
        await opened
    finally:
        transport.remove_listener(TransportEvent.OPEN, on_open)
        transport.remove_listener(TransportEvent.ERROR, on_failure)
        transport.remove_listener(TransportEvent.CLOSE, on_failure)


class ConnectionManager:
    def __init__(
        self,
        url: str,
        registry: ConnectionRegistry,
        transport_factory: TransportFactory,
        heartbeat: HeartbeatMonitor,
        callbacks: ConnectionCallbacks | None = None,
        reconnect_delay_ms: int = 2000,
    ) -> None:
        self._url = url
        self._registry = registry
        self._transport_factory = transport_factory
        self._heartbeat = heartbeat
        self._callbacks = callbacks or ConnectionCallbacks()
        self._reconnect_delay_seconds = reconnect_delay_ms / 1000

        self._transport: TransportPort | None = None
        self._attached: TransportPort | None = None
        self._ready = False
        self._connecting = False
        self._explicit_teardown = False
        self._reconnect_task: asyncio.Task | None = None

    @property
    def transport(self) -> TransportPort | None:
        return self._transport

    @property
    def ready(self) -> bool:
        return self._ready or self.is_open

    @property
    def is_open(self) -> bool:
        return self._transport is not None and self._transport.state is TransportState.OPEN

    @property
    def connecting(self) -> bool:
        return self._connecting

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    def adopt_open(self) -> bool:
        active = self._registry.active
        if active is None or active.state is not TransportState.OPEN:
            return False
        self._adopt(active)
        self._heartbeat.start(active)
        self._ready = True
        return True

    async def connect(self) -> TransportPort:
        self._connecting = True
        self._callbacks.on_state_change()
        try:
            return await self._connect()
        finally:
            self._connecting = False
            self._callbacks.on_state_change()

    async def _connect(self) -> TransportPort:
        active = self._registry.active
        if active is not None and active.state in LIVE_STATES:
            self._adopt(active)
            await wait_for_open(active)
            self._on_opened(active)
            return active

        pending = self._registry.pending
        if pending is not None:
            transport = await asyncio.shield(pending)
            self._adopt(transport)
            await wait_for_open(transport)
            self._on_opened(transport)
            return transport

        self.cancel_reconnect()
        self._explicit_teardown = False

        pending = asyncio.ensure_future(self._establish())
        self._registry.pending = pending
        try:
            transport = await asyncio.shield(pending)
        finally:
            if self._registry.pending is pending:
                self._registry.pending = None
        return transport

    async def _establish(self) -> TransportPort:
        logger.info("Connecting to %s", self._url)
        transport = await self._transport_factory(self._url)
        self._registry.active = transport
        self._adopt(transport)
        await wait_for_open(transport)
        self._on_opened(transport)
        return transport

    def send_control(self, message: dict[str, Any]) -> bool:
        if not self.is_open:
            logger.debug("Dropping control message, transport not open: %s", message)
            return False
        self._transport.send(encode_control(message))
        return True

    def send_audio(self, chunk: bytes) -> None:
        if self.is_open:
            self._transport.send(chunk)

    def acknowledge_heartbeat(self) -> None:
        self._heartbeat.acknowledge()

    def resume(self) -> None:
        self._explicit_teardown = False

    def mark_explicit_teardown(self) -> None:
        self._explicit_teardown = True
        self.cancel_reconnect()

    def close_socket(self) -> None:
        self.mark_explicit_teardown()
        transport = self._transport
        if transport is not None:
            transport.close()
            self._registry.clear(transport)
        self._detach()
        self._heartbeat.stop()
        self._transport = None
        self._ready = False

    def cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    def _adopt(self, transport: TransportPort) -> None:
        self._transport = transport
        self._attach(transport)

    def _attach(self, transport: TransportPort) -> None:
        if self._attached is transport:
            return
        if self._attached is not None:
            self._detach()
        transport.add_listener(TransportEvent.OPEN, self._handle_open)
        transport.add_listener(TransportEvent.ERROR, self._handle_error)
        transport.add_listener(TransportEvent.CLOSE, self._handle_close)
        transport.add_listener(TransportEvent.MESSAGE, self._handle_message)
        self._attached = transport

    def _detach(self) -> None:
        transport = self._attached
        if transport is None:
            return
        transport.remove_listener(TransportEvent.OPEN, self._handle_open)
        transport.remove_listener(TransportEvent.ERROR, self._handle_error)
        transport.remove_listener(TransportEvent.CLOSE, self._handle_close)
        transport.remove_listener(TransportEvent.MESSAGE, self._handle_message)
        self._attached = None

    def _on_opened(self, transport: TransportPort) -> None:
        self._heartbeat.start(transport)
        if self._ready:
            return
        self._ready = True
        logger.info("Connection ready")
        self._callbacks.on_ready()

    def _handle_open(self, _: Any) -> None:
        if self._attached is not None:
            self._on_opened(self._attached)

    def _handle_error(self, error: Any) -> None:
        logger.warning("Transport error: %s", error)
        self._callbacks.on_error(error)

    def _handle_message(self, raw: Any) -> None:
        self._callbacks.on_message(raw)

    def _handle_close(self, info: Any) -> None:
        transport = self._attached
        logger.warning("Connection closed: %s", info)
        self._ready = False
        self._heartbeat.stop()
        self._registry.clear(transport)
        self._detach()
        if self._transport is transport:
            self._transport = None
        if self._explicit_teardown:
            self._callbacks.on_state_change()
            return
        self._callbacks.on_lost(info if isinstance(info, CloseInfo) else CloseInfo(reason=str(info)))
        self._schedule_reconnect()
        self._callbacks.on_state_change()

    def _schedule_reconnect(self) -> None:
        self.cancel_reconnect()
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay_seconds)
        self._reconnect_task = None
        logger.info("Reconnecting to %s", self._url)
        try:
            await self.connect()
        except Exception as exc:
            logger.warning("Reconnect failed: %s", exc)
