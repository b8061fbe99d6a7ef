import asyncio
import logging

from voice_session.domain.messages import HEARTBEAT, encode_control
from voice_session.ports.transport import TransportPort, TransportState

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    def __init__(self, interval_ms: int = 5000, max_missed: int = 2) -> None:
        if max_missed < 1:
            raise ValueError(f"max_missed must be at least 1, got {max_missed}")
        self._interval_seconds = interval_ms / 1000
        self._max_missed = max_missed
        self._missed = 0
        self._transport: TransportPort | None = None
        self._task: asyncio.Task | None = None

    @property
    def missed_count(self) -> int:
        return self._missed

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, transport: TransportPort) -> bool:
        if self.running and self._transport is transport:
            return False
        self.stop()
        self._transport = transport
        self._task = asyncio.create_task(self._loop())
        logger.debug("Heartbeat started (interval=%.1fs, max_missed=%d)", self._interval_seconds, self._max_missed)
        return True

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._transport = None
        self._missed = 0

    def acknowledge(self) -> None:
        self._missed = 0

    def tick(self) -> None:
        transport = self._transport
        if transport is None or transport.state is not TransportState.OPEN:
            return
        transport.send(encode_control(HEARTBEAT))
        self._missed += 1
        if self._missed >= self._max_missed:
            logger.warning("Missed %d heartbeats, closing connection", self._missed)
            transport.close()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            self.tick()
