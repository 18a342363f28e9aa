from enum import Enum, auto


class SessionState(Enum):
    UNSTARTED = auto()
    STARTING = auto()
    RUNNING = auto()
    STOPPED = auto()


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.UNSTARTED: {SessionState.STARTING, SessionState.STOPPED},
    SessionState.STARTING: {SessionState.RUNNING, SessionState.UNSTARTED, SessionState.STOPPED},
    SessionState.RUNNING: {SessionState.STOPPED},
    SessionState.STOPPED: set(),
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
