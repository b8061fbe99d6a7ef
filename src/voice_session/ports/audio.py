from typing import Callable, Protocol

import numpy as np

SamplesCallback = Callable[[np.ndarray], None]
EnergyCallback = Callable[[float], None]


class AudioCapturePort(Protocol):
    """Local microphone capture.

    ``start`` delivers float32 sample frames in [-1, 1] and one energy scalar per
    frame on the event loop thread. ``probe`` raises ``MicrophoneBlockedError`` when
    the platform denies access, ``AudioCaptureError`` for any other failure.
    ``prepare`` raises ``AudioResourceError`` when capture cannot be set up at all.
    """

    @property
    def sample_rate(self) -> int: ...
    async def prepare(self) -> None: ...
    async def probe(self) -> None: ...
    async def start(self, on_samples: SamplesCallback, on_energy: EnergyCallback) -> None: ...
    def stop(self) -> None: ...
