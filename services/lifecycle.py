"""Session status transitions."""
from core.exceptions import InvalidStateError
from models.session import SessionStatus

PAUSE = "pause"
RESUME = "resume"
COMPLETE = "complete"
ABANDON = "abandon"
FAIL = "fail"

EVENTS = (PAUSE, RESUME, COMPLETE, ABANDON, FAIL)

TRANSITIONS = {
    (SessionStatus.IN_PROGRESS, PAUSE): SessionStatus.PAUSED,
    (SessionStatus.PAUSED, RESUME): SessionStatus.IN_PROGRESS,
    (SessionStatus.IN_PROGRESS, COMPLETE): SessionStatus.COMPLETED,
    (SessionStatus.IN_PROGRESS, ABANDON): SessionStatus.ABANDONED,
    (SessionStatus.IN_PROGRESS, FAIL): SessionStatus.FAILED,
    (SessionStatus.PAUSED, FAIL): SessionStatus.FAILED,
}

# Message shown when an event is not allowed from the current status
REJECTION_KEYS = {
    PAUSE: "PAUSE_ONLY_IN_PROGRESS",
    RESUME: "SESSION_NOT_PAUSED",
    COMPLETE: "SESSION_NOT_IN_PROGRESS",
    ABANDON: "SESSION_NOT_IN_PROGRESS",
    FAIL: "INVALID_ACTION",
}


def can_transition(current: str, event: str) -> bool:
    return (current, event) in TRANSITIONS


def next_status(current: str, event: str) -> str:
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidStateError(
            REJECTION_KEYS.get(event, "INVALID_ACTION"),
            details={"status": current, "event": event},
        ) from None
