import json

from voice_session.domain.messages import (
    DISCONNECT,
    HEARTBEAT,
    Disconnect,
    Heartbeat,
    RemoteError,
    StartAudio,
    StopAudio,
    StreamingDelta,
    TranscriptionUpdate,
    decode_frame,
    encode_control,
    parse_control,
)


class TestDecodeFrame:
    def test_json_text(self):
        frame = decode_frame('{"start_audio": true}')
        assert frame.parsed == {"start_audio": True}
        assert frame.is_control

    def test_non_json_text(self):
        frame = decode_frame("hello")
        assert frame.raw == "hello"
        assert frame.parsed is None
        assert not frame.is_control

    def test_binary(self):
        frame = decode_frame(b"\x00\x01")
        assert frame.raw == b"\x00\x01"
        assert frame.parsed is None

    def test_json_scalar_is_not_control(self):
        frame = decode_frame("42")
        assert frame.parsed == 42
        assert not frame.is_control


class TestEncodeControl:
    def test_heartbeat(self):
        assert json.loads(encode_control(HEARTBEAT)) == {"heartbeat": True}

    def test_disconnect(self):
        assert json.loads(encode_control(DISCONNECT)) == {"disconnect": True}


class TestParseControl:
    def test_heartbeat(self):
        assert parse_control({"heartbeat": True}) == [Heartbeat()]

    def test_heartbeat_must_be_true(self):
        assert parse_control({"heartbeat": "yes"}) == []

    def test_error(self):
        assert parse_control({"error": "bad request"}) == [RemoteError(error="bad request")]

    def test_error_wins_over_everything_else(self):
        assert parse_control({"error": "x", "start_audio": True, "disconnect": True}) == [RemoteError(error="x")]

    def test_heartbeat_wins_over_error(self):
        assert parse_control({"heartbeat": True, "error": "x"}) == [Heartbeat()]

    def test_start_audio(self):
        assert parse_control({"start_audio": True}) == [StartAudio()]

    def test_start_audio_excludes_transcription(self):
        assert parse_control({"start_audio": True, "transcription": "hi"}) == [StartAudio()]

    def test_streaming_delta(self):
        message = {"streaming_data": {"previous_transcription": "hello", "new_transcription": "world"}}
        assert parse_control(message) == [StreamingDelta(previous="hello", new="world")]

    def test_streaming_with_empty_previous(self):
        message = {"streaming_data": {"previous_transcription": "", "new_transcription": "hi"}}
        assert parse_control(message) == [StreamingDelta(previous="", new="hi")]

    def test_streaming_without_new_text_is_ignored(self):
        message = {"streaming_data": {"previous_transcription": "hello", "new_transcription": ""}}
        assert parse_control(message) == []

    def test_streaming_without_previous_falls_through(self):
        message = {"streaming_data": {"new_transcription": "hi"}, "transcription": "hi"}
        assert parse_control(message) == [TranscriptionUpdate(text="hi")]

    def test_transcription(self):
        assert parse_control({"transcription": "hello world"}) == [TranscriptionUpdate(text="hello world")]

    def test_empty_transcription_is_ignored(self):
        assert parse_control({"transcription": ""}) == []

    def test_combined_terminal_message_keeps_order(self):
        message = {"transcription": "final", "stop_audio": True, "disconnect": True}
        assert parse_control(message) == [TranscriptionUpdate(text="final"), StopAudio(), Disconnect()]

    def test_stop_audio(self):
        assert parse_control({"stop_audio": True}) == [StopAudio()]

    def test_disconnect(self):
        assert parse_control({"disconnect": True}) == [Disconnect()]

    def test_unknown_keys(self):
        assert parse_control({"status": "ok"}) == []

    def test_non_dict(self):
        assert parse_control(None) == []
        assert parse_control([1, 2]) == []
