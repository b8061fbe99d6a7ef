import asyncio
import logging
from collections.abc import Callable

import numpy as np

from voice_session.domain.audio_buffer import AudioBuffers, drain_chunk
from voice_session.domain.errors import AudioResourceError
from voice_session.domain.pcm import as_pcm16, float_to_pcm16, rms_amplitude
from voice_session.ports.audio import AudioCapturePort

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SAMPLES = 16000


class AudioPipeline:
    def __init__(
        self,
        send_chunk: Callable[[bytes], None],
        can_send: Callable[[], bool],
        on_amplitude: Callable[[float], None],
        capture: AudioCapturePort | None = None,
        external_audio: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SAMPLES,
        send_interval_ms: int = 1000,
        amplitude_from_pcm: bool = True,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not external_audio and capture is None:
            raise ValueError("Local capture mode requires an audio capture")
        self._send_chunk = send_chunk
        self._can_send = can_send
        self._on_amplitude = on_amplitude
        self._capture = capture
        self._external_audio = external_audio
        self._chunk_size = chunk_size
        self._send_interval_seconds = send_interval_ms / 1000
        self._amplitude_from_pcm = amplitude_from_pcm

        self._buffers = AudioBuffers()
        self._gate_open = False
        self._recording = False
        self._prepared = external_audio
        self._sender_task: asyncio.Task | None = None

    @property
    def external_audio(self) -> bool:
        return self._external_audio

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def gate_open(self) -> bool:
        return self._gate_open

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def prepared(self) -> bool:
        return self._prepared

    @property
    def buffered_samples(self) -> int:
        return self._buffers.buffered_samples

    @property
    def buffers(self) -> AudioBuffers:
        return self._buffers

    async def prepare(self) -> None:
        if self._prepared:
            return
        try:
            await self._capture.prepare()
        except AudioResourceError:
            raise
        except Exception as exc:
            raise AudioResourceError(f"Failed to initialize audio capture: {exc}") from exc
        self._prepared = True

    async def probe(self) -> None:
        if self._external_audio:
            return
        await self._capture.probe()

    async def begin_prebuffering(self) -> None:
        if self._recording:
            return
        await self.prepare()
        self._gate_open = False
        await self.start_recording()

    def stop_prebuffering(self) -> None:
        self._gate_open = False
        dropped = self._buffers.buffered_samples
        self._buffers = AudioBuffers()
        if dropped:
            logger.info("Discarded %d buffered samples", dropped)
        self.stop_recording()

    async def start_recording(self) -> None:
        self._cancel_sender()
        if not self._external_audio:
            try:
                await self._capture.start(self._on_captured_samples, self._on_amplitude)
            except Exception:
                self.stop_recording()
                raise
        self._recording = True
        self._ensure_sender()
        logger.info("Audio recording started (external=%s)", self._external_audio)

    def stop_recording(self) -> None:
        if not self._external_audio and self._capture is not None:
            self._capture.stop()
        self._cancel_sender()
        if self._recording:
            logger.info("Audio recording stopped")
        self._recording = False
        self._gate_open = False

    def open_gate(self) -> None:
        self._gate_open = True

    def close_gate(self) -> None:
        self._gate_open = False

    def push_pcm16(self, chunk: bytes | bytearray | memoryview | np.ndarray) -> None:
        samples = as_pcm16(chunk)
        self._buffers = self._buffers.append_pcm16(samples)
        if self._amplitude_from_pcm:
            self._on_amplitude(rms_amplitude(samples))
        self.flush()

    def push_float32(self, samples: np.ndarray) -> None:
        self.push_pcm16(float_to_pcm16(samples))

    def flush(self) -> int:
        if not self._gate_open or not self._can_send():
            return 0
        sent = 0
        while self._send_one():
            sent += 1
        if sent:
            logger.debug("Flushed %d buffered chunk(s)", sent)
        return sent

    def tick(self) -> bool:
        if not self._recording or not self._gate_open or not self._can_send():
            return False
        return self._send_one()

    def _send_one(self) -> bool:
        chunk, remaining = drain_chunk(self._buffers, self._chunk_size)
        if chunk is None:
            return False
        self._send_chunk(chunk)
        self._buffers = remaining
        return True

    def _on_captured_samples(self, samples: np.ndarray) -> None:
        self._buffers = self._buffers.append_float32(samples)

    def _ensure_sender(self) -> None:
        if self._sender_task is not None and not self._sender_task.done():
            return
        self._sender_task = asyncio.create_task(self._send_loop())

    def _cancel_sender(self) -> None:
        if self._sender_task is not None:
            self._sender_task.cancel()
            self._sender_task = None

    async def _send_loop(self) -> None:
        while True:
            await asyncio.sleep(self._send_interval_seconds)
            self.tick()
