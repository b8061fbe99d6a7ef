import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

HEARTBEAT = {"heartbeat": True}
DISCONNECT = {"disconnect": True}


@dataclass(frozen=True)
class InboundFrame:
    raw: str | bytes
    parsed: Any = None

    @property
    def is_control(self) -> bool:
        return isinstance(self.parsed, dict)


@dataclass(frozen=True)
class ControlMessage:
    pass


@dataclass(frozen=True)
class Heartbeat(ControlMessage):
    pass


@dataclass(frozen=True)
class RemoteError(ControlMessage):
    error: Any = None


@dataclass(frozen=True)
class StartAudio(ControlMessage):
    pass


@dataclass(frozen=True)
class StopAudio(ControlMessage):
    pass


@dataclass(frozen=True)
class Disconnect(ControlMessage):
    pass


@dataclass(frozen=True)
class TranscriptionUpdate(ControlMessage):
    text: str = ""


@dataclass(frozen=True)
class StreamingDelta(ControlMessage):
    previous: str = ""
    new: str = ""


def encode_control(message: dict[str, Any]) -> str:
    return json.dumps(message)


def decode_frame(raw: str | bytes) -> InboundFrame:
    if not isinstance(raw, str):
        return InboundFrame(raw=raw)
    try:
        return InboundFrame(raw=raw, parsed=json.loads(raw))
    except json.JSONDecodeError:
        logger.debug("Non-JSON text frame (%d chars)", len(raw))
        return InboundFrame(raw=raw)


def parse_control(parsed: Any) -> list[ControlMessage]:
    if not isinstance(parsed, dict):
        return []

    if parsed.get("heartbeat") is True:
        return [Heartbeat()]
    if parsed.get("error"):
        return [RemoteError(error=parsed["error"])]
    if parsed.get("start_audio"):
        return [StartAudio()]

    streaming = parsed.get("streaming_data")
    if isinstance(streaming, dict):
        previous = streaming.get("previous_transcription")
        new = streaming.get("new_transcription")
        if previous is not None and new:
            return [StreamingDelta(previous=str(previous), new=str(new))]

    messages: list[ControlMessage] = []
    transcription = parsed.get("transcription")
    if isinstance(transcription, str) and transcription:
        messages.append(TranscriptionUpdate(text=transcription))
    if parsed.get("stop_audio"):
        messages.append(StopAudio())
    if parsed.get("disconnect"):
        messages.append(Disconnect())
    return messages
