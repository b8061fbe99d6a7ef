import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from voice_session.domain.audio_pipeline import DEFAULT_CHUNK_SAMPLES, AudioPipeline
from voice_session.domain.connection import ConnectionCallbacks, ConnectionManager, ConnectionRegistry
from voice_session.domain.errors import AudioResourceError, MicrophoneBlockedError
from voice_session.domain.events import (
    Amplitude,
    DomainEvent,
    ErrorRaised,
    EventBus,
    MicConnecting,
    MicOpen,
    Ready,
    SessionEvent,
    SocketMessage,
    Transcription,
)
from voice_session.domain.heartbeat import HeartbeatMonitor
from voice_session.domain.messages import (
    DISCONNECT,
    ControlMessage,
    Disconnect,
    Heartbeat,
    RemoteError,
    StartAudio,
    StopAudio,
    StreamingDelta,
    TranscriptionUpdate,
    decode_frame,
    parse_control,
)
from voice_session.domain.state import SessionState, derive_state, validate_transition
from voice_session.domain.transcript import replay_words
from voice_session.ports.audio import AudioCapturePort
from voice_session.ports.transport import CloseInfo, TransportFactory

logger = logging.getLogger(__name__)

MIC_BLOCKED_MESSAGE = "Microphone access is blocked. Please enable it in your system settings."
AUDIO_INIT_MESSAGE = "Failed to initialize audio capture. Please check your input device."
GENERIC_FAILURE_MESSAGE = "Something failed, please try again."

Notify = Callable[[str, str, str], None]


def new_request_id() -> str:
    return f"requestId-{uuid.uuid4()}"


@dataclass
class Session:
    request_id: str = ""
    transcription: str = ""
    sent: bool = False


class VoiceSession:
    def __init__(
        self,
        url: str,
        registry: ConnectionRegistry,
        transport_factory: TransportFactory,
        capture: AudioCapturePort | None = None,
        external_audio: bool = False,
        session_details: dict[str, Any] | None = None,
        on_send: Callable[[str], None] | None = None,
        on_request_id: Callable[[str], None] | None = None,
        notify: Notify | None = None,
        ping_interval_ms: int = 5000,
        max_missed_pongs: int = 2,
        pcm_chunk_size: int = DEFAULT_CHUNK_SAMPLES,
        amplitude_from_pcm: bool = True,
        reconnect_delay_ms: int = 2000,
        send_interval_ms: int = 1000,
        word_interval_ms: int = 100,
        request_id_factory: Callable[[], str] = new_request_id,
    ) -> None:
        self._session_details = dict(session_details or {})
        self._on_send = on_send or (lambda text: None)
        self._on_request_id = on_request_id or (lambda request_id: None)
        self._notify = notify or (lambda severity, summary, detail: None)
        self._word_interval_seconds = word_interval_ms / 1000
        self._request_id_factory = request_id_factory

        self._bus = EventBus()
        self._connection = ConnectionManager(
            url=url,
            registry=registry,
            transport_factory=transport_factory,
            heartbeat=HeartbeatMonitor(interval_ms=ping_interval_ms, max_missed=max_missed_pongs),
            callbacks=ConnectionCallbacks(
                on_ready=self._handle_ready,
                on_message=self._handle_message,
                on_error=self._handle_transport_error,
                on_lost=self._handle_connection_lost,
                on_state_change=self._refresh_state,
            ),
            reconnect_delay_ms=reconnect_delay_ms,
        )
        self._pipeline = AudioPipeline(
            send_chunk=self._connection.send_audio,
            can_send=lambda: self._connection.is_open,
            on_amplitude=self._set_amplitude,
            capture=capture,
            external_audio=external_audio,
            chunk_size=pcm_chunk_size,
            send_interval_ms=send_interval_ms,
            amplitude_from_pcm=amplitude_from_pcm,
        )

        self._session = Session()
        self._state = SessionState.DISCONNECTED
        self._mic_open = False
        self._mic_connecting = False
        self._amplitude = 0.0
        self._attempt = 0
        self._replay_task: asyncio.Task | None = None
        self._capture_task: asyncio.Task | None = None

        if self._connection.adopt_open():
            asyncio.get_running_loop().call_soon(self._emit, Ready())
            self._refresh_state()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ws_ready(self) -> bool:
        return self._connection.ready

    @property
    def mic_open(self) -> bool:
        return self._mic_open

    @property
    def mic_connecting(self) -> bool:
        return self._mic_connecting

    @property
    def amplitude(self) -> float:
        return self._amplitude

    @property
    def transcription(self) -> str:
        return self._session.transcription

    @property
    def request_id(self) -> str:
        return self._session.request_id

    @property
    def gate_open(self) -> bool:
        return self._pipeline.gate_open

    @property
    def session(self) -> Session:
        return self._session

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def pipeline(self) -> AudioPipeline:
        return self._pipeline

    def on(self, event: SessionEvent | str, handler: Callable[[DomainEvent], None]) -> Callable[[], None]:
        return self._bus.subscribe(event, handler)

    async def connect(self) -> None:
        await self._connection.connect()

    def disconnect(self) -> None:
        self._connection.mark_explicit_teardown()
        self._connection.send_control(DISCONNECT)
        self._local_teardown()

    def close_socket(self) -> None:
        self._connection.close_socket()
        self._local_teardown()

    def teardown(self) -> None:
        self._local_teardown()

    async def start_session(self) -> None:
        if not self._pipeline.prepared:
            try:
                await self._pipeline.prepare()
            except AudioResourceError as exc:
                logger.error("Audio initialization failed: %s", exc)
                self._emit(ErrorRaised(error=exc))
                self._notify("error", "Audio Error", AUDIO_INIT_MESSAGE)
                return

        if self._mic_connecting:
            self._cancel_pending_start()
            return
        if self._mic_open:
            self.disconnect()
            return

        self._attempt += 1
        attempt = self._attempt
        self._set_mic_connecting(True)
        try:
            await self._pipeline.probe()
            if attempt != self._attempt:
                return
            if not self._connection.is_open:
                await self._connection.connect()
            if attempt != self._attempt:
                logger.info("Session start cancelled while connecting")
                return
            self._connection.resume()

            request_id = self._request_id_factory()
            self._session = Session(request_id=request_id, sent=True)
            self._on_request_id(request_id)
            self._emit(Transcription(text=""))
            self._connection.send_control({**self._session_details, "requestId": request_id})
            logger.info("Session started (request_id=%s)", request_id)
        except MicrophoneBlockedError as exc:
            logger.warning("Microphone blocked: %s", exc)
            if self._fail_start(attempt):
                self._emit(ErrorRaised(error=MIC_BLOCKED_MESSAGE))
                self._notify("error", "Mic Disabled", MIC_BLOCKED_MESSAGE)
        except Exception as exc:
            logger.exception("Session start failed")
            if self._fail_start(attempt):
                self._emit(ErrorRaised(error=exc))
                self._notify("error", "Error", GENERIC_FAILURE_MESSAGE)

    async def stop_audio(self) -> None:
        self._session.sent = False
        self.disconnect()

    async def begin_prebuffering(self) -> None:
        await self._pipeline.begin_prebuffering()

    def stop_prebuffering(self) -> None:
        self._pipeline.stop_prebuffering()
        self._stop_recording()

    def push_pcm16(self, chunk: bytes | bytearray | memoryview | np.ndarray) -> None:
        self._pipeline.push_pcm16(chunk)

    def push_float32(self, samples: np.ndarray) -> None:
        self._pipeline.push_float32(samples)

    async def start_mic(self) -> None:
        await self._pipeline.start_recording()

    def stop_mic(self) -> None:
        self._stop_recording()
        self._connection.send_control(DISCONNECT)

    def _handle_ready(self) -> None:
        self._emit(Ready())
        self._refresh_state()

    def _handle_transport_error(self, error: Any) -> None:
        self._emit(ErrorRaised(error=error))

    def _handle_connection_lost(self, info: CloseInfo) -> None:
        logger.warning("Connection lost (code=%s reason=%s)", info.code, info.reason or "-")
        self._local_teardown()

    def _handle_message(self, raw: Any) -> None:
        frame = decode_frame(raw)
        self._emit(SocketMessage(raw=frame.raw, parsed=frame.parsed))
        for message in parse_control(frame.parsed):
            self._apply(message)
        self._refresh_state()

    def _apply(self, message: ControlMessage) -> None:
        if isinstance(message, Heartbeat):
            self._connection.acknowledge_heartbeat()
        elif isinstance(message, RemoteError):
            logger.error("Server error: %s", message.error)
            self._local_teardown()
            self._notify("error", "Error", GENERIC_FAILURE_MESSAGE)
            self._emit(ErrorRaised(error=message.error))
        elif isinstance(message, StartAudio):
            self._open_gate()
        elif isinstance(message, StreamingDelta):
            if self._session.sent:
                self._start_replay(message.previous, message.new)
        elif isinstance(message, TranscriptionUpdate):
            if self._session.sent:
                self._cancel_replay()
                self._publish_transcription(message.text, None)
        elif isinstance(message, StopAudio):
            self._set_amplitude(0.0)
            self._stop_recording()
        elif isinstance(message, Disconnect):
            self._local_teardown()
            self._handle_send()

    def _open_gate(self) -> None:
        if not self._session.sent:
            logger.debug("Ignoring start_audio, no session payload sent")
            return
        self._pipeline.open_gate()
        self._set_mic_connecting(False)
        self._set_mic_open(True)
        logger.info("Audio gate open")
        if not self._pipeline.recording:
            self._capture_task = asyncio.create_task(self._start_recording_for_gate(self._attempt))
        self._pipeline.flush()

    async def _start_recording_for_gate(self, attempt: int) -> None:
        try:
            await self._pipeline.start_recording()
        except Exception as exc:
            self._capture_task = None
            logger.exception("Failed to start audio capture")
            if attempt == self._attempt:
                self._local_teardown()
            self._emit(ErrorRaised(error=exc))
            return
        self._capture_task = None
        if attempt != self._attempt:
            self._pipeline.stop_recording()
            return
        self._pipeline.flush()

    def _start_replay(self, previous: str, new: str) -> None:
        self._cancel_replay()
        self._publish_transcription(previous or "", None)
        self._replay_task = asyncio.create_task(
            replay_words(self._publish_transcription, previous, new, self._word_interval_seconds)
        )

    def _cancel_replay(self) -> None:
        if self._replay_task is not None:
            self._replay_task.cancel()
            self._replay_task = None

    def _publish_transcription(self, text: str, delta: str | None) -> None:
        self._session.transcription = text
        self._emit(Transcription(text=text, delta=delta))

    def _handle_send(self) -> None:
        text = self._session.transcription.strip()
        if not text:
            return
        logger.info("Transcription: %s", text)
        self._on_send(text)

    def _cancel_pending_start(self) -> None:
        logger.info("Cancelling session start")
        self._attempt += 1
        self._connection.send_control(DISCONNECT)
        self._set_mic_connecting(False)
        self._session.sent = False
        self._stop_recording()
        self._refresh_state()

    def _fail_start(self, attempt: int) -> bool:
        if attempt != self._attempt:
            return False
        self._session.sent = False
        self._set_mic_connecting(False)
        self._refresh_state()
        return True

    def _stop_recording(self) -> None:
        if self._capture_task is not None:
            self._capture_task.cancel()
            self._capture_task = None
        self._pipeline.stop_recording()
        self._set_mic_open(False)

    def _local_teardown(self) -> None:
        self._attempt += 1
        self._session.sent = False
        self._set_mic_connecting(False)
        self._stop_recording()
        self._cancel_replay()
        self._set_amplitude(0.0)
        self._refresh_state()

    def _set_mic_connecting(self, connecting: bool) -> None:
        if self._mic_connecting == connecting:
            return
        self._mic_connecting = connecting
        self._emit(MicConnecting(connecting=connecting))
        self._refresh_state()

    def _set_mic_open(self, open_: bool) -> None:
        if self._mic_open == open_:
            return
        self._mic_open = open_
        self._emit(MicOpen(open=open_))
        self._refresh_state()

    def _set_amplitude(self, value: float) -> None:
        self._amplitude = value
        self._emit(Amplitude(value=value))

    def _refresh_state(self) -> None:
        target = derive_state(
            ready=self._connection.is_open,
            connecting=self._connection.connecting,
            mic_connecting=self._mic_connecting,
            mic_open=self._mic_open,
        )
        if target is self._state:
            return
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target

    def _emit(self, payload: DomainEvent) -> None:
        self._bus.emit(payload)
