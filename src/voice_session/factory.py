import logging
from collections.abc import Callable

from voice_session.adapters.websocket_transport import transport_factory
from voice_session.config import VoiceSessionConfig
from voice_session.domain.connection import ConnectionRegistry
from voice_session.domain.session import Notify, VoiceSession
from voice_session.environment import resolve_external_audio
from voice_session.ports.audio import AudioCapturePort
from voice_session.ports.transport import TransportFactory

logger = logging.getLogger(__name__)


def create_capture(config: VoiceSessionConfig) -> AudioCapturePort:
    from voice_session.adapters.sounddevice_capture import SounddeviceMicrophone

    return SounddeviceMicrophone(
        device=config.capture_device,
        sample_rate=config.sample_rate,
        frame_duration_ms=config.frame_duration_ms,
    )


def create_transport_factory(
    config: VoiceSessionConfig,
    fallback: TransportFactory | None = None,
) -> TransportFactory:
    return transport_factory(options={"open_timeout": config.open_timeout_s}, fallback=fallback)


def create_session(
    config: VoiceSessionConfig,
    registry: ConnectionRegistry,
    on_send: Callable[[str], None] | None = None,
    on_request_id: Callable[[str], None] | None = None,
    notify: Notify | None = None,
    capture: AudioCapturePort | None = None,
    transport: TransportFactory | None = None,
    external_audio: bool | None = None,
) -> VoiceSession:
    if external_audio is None:
        external_audio = resolve_external_audio(config)
    if not external_audio and capture is None:
        capture = create_capture(config)

    return VoiceSession(
        url=config.url,
        registry=registry,
        transport_factory=transport or create_transport_factory(config),
        capture=capture,
        external_audio=external_audio,
        session_details=config.session_details,
        on_send=on_send,
        on_request_id=on_request_id,
        notify=notify,
        ping_interval_ms=config.ping_interval_ms,
        max_missed_pongs=config.max_missed_pongs,
        pcm_chunk_size=config.pcm_chunk_size,
        amplitude_from_pcm=config.amplitude_from_pcm,
        reconnect_delay_ms=config.reconnect_delay_ms,
        send_interval_ms=config.send_interval_ms,
        word_interval_ms=config.word_interval_ms,
    )
