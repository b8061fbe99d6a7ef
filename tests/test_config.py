import pytest
from pydantic import ValidationError

from voice_session.config import VoiceSessionConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("URL", "PING_INTERVAL_MS", "MAX_MISSED_PONGS", "PCM_CHUNK_SIZE", "SESSION_DETAILS", "EXTERNAL_AUDIO"):
        monkeypatch.delenv(f"VOICE_SESSION_{name}", raising=False)


class TestVoiceSessionConfig:
    def test_defaults(self):
        config = VoiceSessionConfig(url="ws://localhost:9000")

        assert config.ping_interval_ms == 5000
        assert config.max_missed_pongs == 2
        assert config.reconnect_delay_ms == 2000
        assert config.pcm_chunk_size == 16000
        assert config.send_interval_ms == 1000
        assert config.external_audio is None
        assert config.amplitude_from_pcm is True
        assert config.word_interval_ms == 100
        assert config.session_details == {}

    def test_url_is_required(self):
        with pytest.raises(ValidationError):
            VoiceSessionConfig()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("VOICE_SESSION_URL", "wss://speech.example.com/stream")
        monkeypatch.setenv("VOICE_SESSION_PCM_CHUNK_SIZE", "8000")
        monkeypatch.setenv("VOICE_SESSION_EXTERNAL_AUDIO", "true")
        monkeypatch.setenv("VOICE_SESSION_SESSION_DETAILS", '{"language": "en", "model": "fast"}')

        config = VoiceSessionConfig()

        assert config.url == "wss://speech.example.com/stream"
        assert config.pcm_chunk_size == 8000
        assert config.external_audio is True
        assert config.session_details == {"language": "en", "model": "fast"}

    def test_rejects_zero_missed_pongs(self):
        with pytest.raises(ValidationError):
            VoiceSessionConfig(url="ws://x", max_missed_pongs=0)

    def test_rejects_empty_chunks(self):
        with pytest.raises(ValidationError):
            VoiceSessionConfig(url="ws://x", pcm_chunk_size=0)
