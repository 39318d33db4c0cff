"""Status workflow for material requests.

pending -> approved | rejected
approved -> fulfilled | rejected
rejected -> pending
fulfilled is terminal.
"""
from typing import FrozenSet, Mapping, Union

from app.requests.domain.errors import InvalidTransition
from app.requests.domain.models import MaterialRequestStatus

StatusLike = Union[MaterialRequestStatus, str]

STATUS_TRANSITIONS: Mapping[MaterialRequestStatus, FrozenSet[MaterialRequestStatus]] = {
    MaterialRequestStatus.PENDING: frozenset(
        {MaterialRequestStatus.APPROVED, MaterialRequestStatus.REJECTED}
    ),
    MaterialRequestStatus.APPROVED: frozenset(
        {MaterialRequestStatus.FULFILLED, MaterialRequestStatus.REJECTED}
    ),
    MaterialRequestStatus.REJECTED: frozenset({MaterialRequestStatus.PENDING}),
    MaterialRequestStatus.FULFILLED: frozenset(),
}


def _coerce(status: StatusLike) -> MaterialRequestStatus:
    return MaterialRequestStatus(status)


def allowed_transitions(current: StatusLike) -> FrozenSet[MaterialRequestStatus]:
    try:
        return STATUS_TRANSITIONS[_coerce(current)]
    except ValueError:
        return frozenset()


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    try:
        return _coerce(target) in allowed_transitions(current)
    except ValueError:
        return False


def request_transition(current: StatusLike, target: StatusLike) -> MaterialRequestStatus:
    """Validate a status change and return the target status.

    Raises ``InvalidTransition`` when the change is not in the table; the
    caller must then leave the store alone.
    """
    if not can_transition(current, target):
        raise InvalidTransition(_value(current), _value(target))
    return _coerce(target)


def is_terminal(status: StatusLike) -> bool:
    return not allowed_transitions(status)


def _value(status: StatusLike) -> str:
    return status.value if isinstance(status, MaterialRequestStatus) else str(status)
