import pytest

from core.exceptions import InvalidStateError
from models.session import SessionStatus
from services import lifecycle

STATUSES = [
    SessionStatus.IN_PROGRESS,
    SessionStatus.PAUSED,
    SessionStatus.COMPLETED,
    SessionStatus.ABANDONED,
    SessionStatus.FAILED,
]


def test_allowed_transitions():
    assert lifecycle.next_status(SessionStatus.IN_PROGRESS, lifecycle.PAUSE) == SessionStatus.PAUSED
    assert lifecycle.next_status(SessionStatus.PAUSED, lifecycle.RESUME) == SessionStatus.IN_PROGRESS
    assert lifecycle.next_status(SessionStatus.IN_PROGRESS, lifecycle.COMPLETE) == SessionStatus.COMPLETED
    assert lifecycle.next_status(SessionStatus.IN_PROGRESS, lifecycle.ABANDON) == SessionStatus.ABANDONED
    assert lifecycle.next_status(SessionStatus.PAUSED, lifecycle.FAIL) == SessionStatus.FAILED


@pytest.mark.parametrize("status", STATUSES)
@pytest.mark.parametrize("event", lifecycle.EVENTS)
def test_every_other_pair_is_rejected(status, event):
    if lifecycle.can_transition(status, event):
        return
    with pytest.raises(InvalidStateError) as exc_info:
        lifecycle.next_status(status, event)
    assert exc_info.value.message_key == lifecycle.REJECTION_KEYS[event]


@pytest.mark.parametrize("terminal", [SessionStatus.COMPLETED, SessionStatus.ABANDONED, SessionStatus.FAILED])
def test_terminal_states_are_final(terminal):
    assert not any(lifecycle.can_transition(terminal, e) for e in lifecycle.EVENTS)


def test_rejection_messages_are_localized():
    with pytest.raises(InvalidStateError) as exc_info:
        lifecycle.next_status(SessionStatus.COMPLETED, lifecycle.RESUME)
    assert exc_info.value.message() == "هذه الجلسة ليست متوقفة"
    assert exc_info.value.message("EN") == "This session is not paused"

    with pytest.raises(InvalidStateError) as exc_info:
        lifecycle.next_status(SessionStatus.PAUSED, lifecycle.COMPLETE)
    assert exc_info.value.message() == "الاختبار ليس قيد التقدم"
