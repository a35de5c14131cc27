"""
Tests for the service request transition table

Every (current, target) pair is checked, so adding an edge by accident
shows up here.
"""

from datetime import datetime, timedelta, timezone

import pytest

from medequip.kernel.errors import ErrorKind
from medequip.service_requests.invariants import (
    InvalidStatusTransition,
    is_bottleneck,
    is_valid_transition,
    validate_transition,
)
from medequip.service_requests.models import ServiceRequestStatus as S

EDGES = {
    (S.PENDING, S.QUOTED),
    (S.PENDING, S.CANCELLED),
    (S.QUOTED, S.ACCEPTED),
    (S.QUOTED, S.CANCELLED),
    (S.ACCEPTED, S.IN_PROGRESS),
    (S.ACCEPTED, S.CANCELLED),
    (S.ACCEPTED, S.DISPUTED),
    (S.IN_PROGRESS, S.COMPLETED),
    (S.IN_PROGRESS, S.DISPUTED),
    (S.COMPLETED, S.DISPUTED),
}


@pytest.mark.parametrize("current", list(S))
@pytest.mark.parametrize("target", list(S))
def test_every_pair(current: S, target: S) -> None:
    assert is_valid_transition(current, target) is ((current, target) in EDGES)


@pytest.mark.parametrize("terminal", [S.CANCELLED, S.DISPUTED])
def test_terminal_states_have_no_exits(terminal: S) -> None:
    assert not any(is_valid_transition(terminal, target) for target in S)


def test_self_loops_are_rejected() -> None:
    with pytest.raises(InvalidStatusTransition) as exc_info:
        validate_transition(S.PENDING, S.PENDING)

    assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION
    assert exc_info.value.details == {"current_status": "pending", "target_status": "pending"}


def test_bottleneck_threshold_is_strict() -> None:
    updated = datetime(2025, 1, 1, tzinfo=timezone.utc)
    request = {"status": "accepted", "updated_at": updated}

    assert not is_bottleneck(request, updated + timedelta(days=7), 7)
    assert is_bottleneck(request, updated + timedelta(days=7, seconds=1), 7)


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_closed_requests_are_never_bottlenecks(status: str) -> None:
    updated = datetime(2025, 1, 1, tzinfo=timezone.utc)

    request = {"status": status, "updated_at": updated}

    assert not is_bottleneck(request, updated + timedelta(days=90), 7)
