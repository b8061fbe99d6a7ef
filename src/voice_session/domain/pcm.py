import numpy as np

AMPLITUDE_WINDOW_SAMPLES = 1024


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.round(scaled).astype(np.int16)


def as_pcm16(chunk: bytes | bytearray | memoryview | np.ndarray) -> np.ndarray:
    if isinstance(chunk, np.ndarray):
        if chunk.dtype != np.int16:
            raise TypeError(f"Expected int16 samples, got {chunk.dtype}")
        return chunk.reshape(-1)
    data = bytes(chunk)
    if len(data) % 2:
        raise ValueError(f"PCM16 payload must have an even byte length, got {len(data)}")
    return np.frombuffer(data, dtype="<i2").astype(np.int16)


def pcm16_bytes(samples: np.ndarray) -> bytes:
    return samples.astype("<i2").tobytes()


def rms_amplitude(samples: np.ndarray, window: int = AMPLITUDE_WINDOW_SAMPLES) -> float:
    head = samples[:window].astype(np.float64) / 32768.0
    if head.size == 0:
        return 0.0
    return float(np.sqrt(np.sum(head * head) / head.size))


def frame_energy(samples: np.ndarray) -> float:
    frame = samples.astype(np.float64)
    return float(np.sum(frame * frame))
