from enum import Enum, auto


class SessionState(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    READY = auto()
    MIC_CONNECTING = auto()
    MIC_OPEN = auto()


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.DISCONNECTED: {
        SessionState.CONNECTING,
        SessionState.READY,
        SessionState.MIC_CONNECTING,
        SessionState.MIC_OPEN,
    },
    SessionState.CONNECTING: {
        SessionState.READY,
        SessionState.MIC_CONNECTING,
        SessionState.MIC_OPEN,
        SessionState.DISCONNECTED,
    },
    SessionState.READY: {
        SessionState.MIC_CONNECTING,
        SessionState.MIC_OPEN,
        SessionState.CONNECTING,
        SessionState.DISCONNECTED,
    },
    SessionState.MIC_CONNECTING: {
        SessionState.MIC_OPEN,
        SessionState.READY,
        SessionState.CONNECTING,
        SessionState.DISCONNECTED,
    },
    SessionState.MIC_OPEN: {
        SessionState.MIC_CONNECTING,
        SessionState.READY,
        SessionState.CONNECTING,
        SessionState.DISCONNECTED,
    },
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")


def derive_state(
    ready: bool,
    connecting: bool,
    mic_connecting: bool,
    mic_open: bool,
) -> SessionState:
    if mic_open and ready:
        return SessionState.MIC_OPEN
    if mic_connecting:
        return SessionState.MIC_CONNECTING
    if ready:
        return SessionState.READY
    if connecting:
        return SessionState.CONNECTING
    return SessionState.DISCONNECTED
