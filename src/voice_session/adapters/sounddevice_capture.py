import asyncio
import logging

import janus
import numpy as np
import sounddevice as sd

from voice_session.domain.errors import (
    AudioCaptureError,
    AudioResourceError,
    MicrophoneBlockedError,
    is_permission_denied,
)
from voice_session.domain.pcm import frame_energy
from voice_session.ports.audio import EnergyCallback, SamplesCallback

logger = logging.getLogger(__name__)


class SounddeviceMicrophone:
    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = 16000,
        frame_duration_ms: int = 16,
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._frame_duration_ms = frame_duration_ms
        self._frame_size = int(sample_rate * frame_duration_ms / 1000)
        self._resolved_device: str | int | None = None
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[np.ndarray] | None = None
        self._reader_task: asyncio.Task | None = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    async def prepare(self) -> None:
        try:
            self._resolved_device = self._resolve_device()
            sd.check_input_settings(
                device=self._resolved_device,
                channels=1,
                dtype="float32",
                samplerate=self._sample_rate,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise AudioResourceError(f"Input device unavailable: {exc}") from exc
        logger.info("Audio input ready (device=%s, rate=%d)", self._resolved_device, self._sample_rate)

    async def probe(self) -> None:
        try:
            await asyncio.to_thread(self._open_and_close)
        except Exception as exc:
            raise self._classify(exc) from exc

    async def start(self, on_samples: SamplesCallback, on_energy: EnergyCallback) -> None:
        self.stop()
        self._queue = janus.Queue(maxsize=200)
        queue = self._queue

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            try:
                queue.sync_q.put_nowait(indata[:, 0].copy())
            except janus.SyncQueueFull:
                pass
            except janus.SyncQueueShutDown:
                pass

        try:
            self._stream = sd.InputStream(
                device=self._resolved_device,
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._frame_size,
                callback=audio_callback,
            )
            self._stream.start()
        except Exception as exc:
            self.stop()
            raise self._classify(exc) from exc

        self._reader_task = asyncio.create_task(self._read_frames(queue, on_samples, on_energy))
        logger.info(
            "Audio capture started (device=%s, rate=%d, frame=%dms)",
            self._resolved_device, self._sample_rate, self._frame_duration_ms,
        )

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            logger.info("Audio capture stopped")
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if self._queue is not None:
            self._queue.close()
            self._queue = None

    async def _read_frames(
        self,
        queue: janus.Queue[np.ndarray],
        on_samples: SamplesCallback,
        on_energy: EnergyCallback,
    ) -> None:
        while True:
            try:
                frame = await queue.async_q.get()
            except janus.AsyncQueueShutDown:
                break
            on_samples(frame)
            on_energy(frame_energy(frame))

    def _open_and_close(self) -> None:
        stream = sd.InputStream(
            device=self._resolved_device,
            samplerate=self._sample_rate,
            channels=1,
            dtype="float32",
        )
        try:
            stream.start()
            stream.stop()
        finally:
            stream.close()

    def _resolve_device(self) -> str | int | None:
        if self._device is None:
            return None
        if isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        for i, dev in enumerate(sd.query_devices()):
            if self._device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", self._device, i, dev["name"])
                return i
        raise ValueError(f"No input device matching '{self._device}'")

    @staticmethod
    def _classify(error: Exception) -> AudioCaptureError:
        if is_permission_denied(error):
            return MicrophoneBlockedError(str(error))
        return AudioCaptureError(str(error))
