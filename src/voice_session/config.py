from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class VoiceSessionConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VOICE_SESSION_")

    url: str

    ping_interval_ms: int = Field(default=5000, gt=0)
    max_missed_pongs: int = Field(default=2, ge=1)
    reconnect_delay_ms: int = Field(default=2000, ge=0)
    open_timeout_s: float = 10.0

    pcm_chunk_size: int = Field(default=16000, gt=0)
    send_interval_ms: int = Field(default=1000, gt=0)
    external_audio: bool | None = None
    amplitude_from_pcm: bool = True

    sample_rate: int = 16000
    frame_duration_ms: int = 16
    capture_device: str | None = None

    word_interval_ms: int = Field(default=100, ge=0)

    session_details: dict[str, Any] = {}
