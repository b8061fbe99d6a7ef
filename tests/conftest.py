import asyncio
import io
import json
import wave
from typing import Any

import numpy as np
import pytest

from voice_session.domain.connection import ConnectionRegistry
from voice_session.domain.pcm import frame_energy
from voice_session.ports.audio import EnergyCallback, SamplesCallback
from voice_session.ports.transport import CloseInfo, Listener, TransportEvent, TransportState


SAMPLE_RATE = 16000
CHUNK_SIZE = 1600


def generate_silence(duration_ms: int = 100, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = 100,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    return (generate_sine_float(frequency, duration_ms, amplitude, sample_rate) * 32767).astype(np.int16).tobytes()


def generate_sine_float(
    frequency: float = 440.0,
    duration_ms: int = 100,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    return (np.sin(2 * np.pi * frequency * t) * amplitude).astype(np.float32)


def counting_pcm(count: int, start: int = 0) -> np.ndarray:
    return np.arange(start, start + count, dtype=np.int16)


def pcm_to_wav_bytes(
    pcm_data: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = 1,
    sample_width: int = 2,
) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_data)
    return buffer.getvalue()


class FakeTransport:
    def __init__(self, state: TransportState = TransportState.CONNECTING) -> None:
        self._state = state
        self._listeners: dict[TransportEvent, list[Listener]] = {event: [] for event in TransportEvent}
        self._closed = asyncio.Event()
        self.sent: list[str | bytes] = []
        self.close_calls = 0

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def sent_control(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent if isinstance(frame, str)]

    @property
    def sent_audio(self) -> list[bytes]:
        return [frame for frame in self.sent if isinstance(frame, bytes)]

    def listener_count(self, event: TransportEvent) -> int:
        return len(self._listeners[event])

    def send(self, frame: str | bytes) -> None:
        self.sent.append(frame)

    def close(self) -> None:
        self.close_calls += 1
        if self._state is not TransportState.CLOSED:
            self._state = TransportState.CLOSING

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def add_listener(self, event: TransportEvent, handler: Listener) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: TransportEvent, handler: Listener) -> None:
        if handler in self._listeners[event]:
            self._listeners[event].remove(handler)

    def simulate_open(self) -> None:
        self._state = TransportState.OPEN
        self._dispatch(TransportEvent.OPEN, None)

    def simulate_message(self, message: dict[str, Any] | str | bytes) -> None:
        raw = json.dumps(message) if isinstance(message, dict) else message
        self._dispatch(TransportEvent.MESSAGE, raw)

    def simulate_error(self, error: Any = "boom") -> None:
        self._dispatch(TransportEvent.ERROR, error)

    def simulate_close(self, code: int = 1000, reason: str = "") -> None:
        self._state = TransportState.CLOSED
        self._closed.set()
        self._dispatch(TransportEvent.CLOSE, CloseInfo(code=code, reason=reason))

    def _dispatch(self, event: TransportEvent, detail: Any) -> None:
        for handler in list(self._listeners[event]):
            handler(detail)


class FakeTransportFactory:
    def __init__(self, auto_open: bool = True, error: Exception | None = None) -> None:
        self.auto_open = auto_open
        self.error = error
        self.created: list[FakeTransport] = []
        self.urls: list[str] = []

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        transport = FakeTransport()
        self.created.append(transport)
        if self.auto_open:
            asyncio.get_running_loop().call_soon(transport.simulate_open)
        return transport


class FakeCapture:
    def __init__(
        self,
        prepare_error: Exception | None = None,
        probe_error: Exception | None = None,
        start_error: Exception | None = None,
    ) -> None:
        self.prepare_error = prepare_error
        self.probe_error = probe_error
        self.start_error = start_error
        self.prepare_calls = 0
        self.probe_calls = 0
        self.start_calls = 0
        self.stop_calls = 0
        self.started = False
        self._on_samples: SamplesCallback | None = None
        self._on_energy: EnergyCallback | None = None

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    async def prepare(self) -> None:
        self.prepare_calls += 1
        if self.prepare_error is not None:
            raise self.prepare_error

    async def probe(self) -> None:
        self.probe_calls += 1
        if self.probe_error is not None:
            raise self.probe_error

    async def start(self, on_samples: SamplesCallback, on_energy: EnergyCallback) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self._on_samples = on_samples
        self._on_energy = on_energy
        self.started = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.started = False

    def feed(self, samples: np.ndarray) -> None:
        if not self.started:
            return
        self._on_samples(samples)
        self._on_energy(frame_energy(samples))


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    def of(self, kind: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, kind)]


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def recorder():
    return EventRecorder()
