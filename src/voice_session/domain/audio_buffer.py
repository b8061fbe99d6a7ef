from dataclasses import dataclass, field

import numpy as np

from voice_session.domain.pcm import float_to_pcm16, pcm16_bytes


@dataclass(frozen=True)
class AudioBuffers:
    pcm16: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int16))
    float32: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))

    @property
    def buffered_samples(self) -> int:
        return int(self.pcm16.size + self.float32.size)

    def append_pcm16(self, samples: np.ndarray) -> "AudioBuffers":
        return AudioBuffers(np.concatenate((self.pcm16, samples)), self.float32)

    def append_float32(self, samples: np.ndarray) -> "AudioBuffers":
        frame = np.asarray(samples, dtype=np.float32).reshape(-1)
        return AudioBuffers(self.pcm16, np.concatenate((self.float32, frame)))


def drain_chunk(buffers: AudioBuffers, chunk_size: int) -> tuple[bytes | None, AudioBuffers]:
    """Take one whole chunk off the buffers, PCM16 first, then float32.

    Returns the chunk bytes (``None`` when neither buffer holds a whole chunk) and
    the buffers that remain once the chunk has been sent.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if buffers.pcm16.size >= chunk_size:
        chunk = pcm16_bytes(buffers.pcm16[:chunk_size])
        return chunk, AudioBuffers(buffers.pcm16[chunk_size:].copy(), buffers.float32)
    if buffers.float32.size >= chunk_size:
        chunk = pcm16_bytes(float_to_pcm16(buffers.float32[:chunk_size]))
        return chunk, AudioBuffers(buffers.pcm16, buffers.float32[chunk_size:].copy())
    return None, buffers
