class VoiceSessionError(Exception):
    pass


class AudioCaptureError(VoiceSessionError):
    pass


class MicrophoneBlockedError(AudioCaptureError):
    pass


class AudioResourceError(VoiceSessionError):
    pass


class TransportUnavailableError(VoiceSessionError):
    pass


class TransportClosedError(VoiceSessionError):
    pass


PERMISSION_DENIED_MARKERS = (
    "permission denied",
    "not allowed",
    "notallowederror",
    "access denied",
)


def is_permission_denied(error: BaseException) -> bool:
    if isinstance(error, PermissionError):
        return True
    text = f"{type(error).__name__} {error}".lower()
    return any(marker in text for marker in PERMISSION_DENIED_MARKERS)
