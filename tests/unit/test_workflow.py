import itertools

import pytest

from app.requests.domain.errors import AppError, ErrorCode, InvalidTransition
from app.requests.domain.models import MaterialRequestStatus
from app.requests.domain.workflow import (
    allowed_transitions,
    can_transition,
    is_terminal,
    request_transition,
)

ALLOWED = {
    ("pending", "approved"),
    ("pending", "rejected"),
    ("approved", "fulfilled"),
    ("approved", "rejected"),
    ("rejected", "pending"),
}

STATUSES = [status.value for status in MaterialRequestStatus]


@pytest.mark.parametrize("current,target", list(itertools.product(STATUSES, STATUSES)))
def test_transition_table_holds_for_every_pair(current, target):
    if (current, target) in ALLOWED:
        assert request_transition(current, target) == MaterialRequestStatus(target)
        assert can_transition(current, target)
    else:
        with pytest.raises(InvalidTransition) as exc:
            request_transition(current, target)
        assert exc.value.code == ErrorCode.VALIDATION_FAILED
        assert exc.value.context == {"from_status": current, "to_status": target}
        assert not can_transition(current, target)


def test_fulfilled_is_the_only_terminal_status():
    assert [status for status in STATUSES if is_terminal(status)] == ["fulfilled"]
    assert allowed_transitions(MaterialRequestStatus.FULFILLED) == frozenset()


def test_unknown_status_is_rejected_as_transition():
    with pytest.raises(InvalidTransition):
        request_transition("pending", "shipped")
    with pytest.raises(InvalidTransition):
        request_transition("archived", "pending")
    assert allowed_transitions("archived") == frozenset()


def test_invalid_transition_is_an_app_error():
    error = InvalidTransition("fulfilled", "pending")
    assert isinstance(error, AppError)
    assert error.current == "fulfilled"
    assert error.target == "pending"
    assert "fulfilled" in error.user_message
