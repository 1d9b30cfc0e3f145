"""Tests for the thread status state machine."""

import pytest

from nexus_agent.errors import InvalidStatusTransition
from nexus_agent.threads import ThreadStatus, check_transition, settle_status

ACTIVE = ThreadStatus.ACTIVE
SLEEPING = ThreadStatus.SLEEPING
COMPLETE = ThreadStatus.COMPLETE
FAILED = ThreadStatus.FAILED


class TestCheckTransition:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ACTIVE, SLEEPING),
            (SLEEPING, ACTIVE),
            (ACTIVE, COMPLETE),
            (SLEEPING, COMPLETE),
            (ACTIVE, FAILED),
            (SLEEPING, FAILED),
            (COMPLETE, COMPLETE),
        ],
    )
    def test_allowed(self, current: ThreadStatus, target: ThreadStatus) -> None:
        check_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (COMPLETE, ACTIVE),
            (COMPLETE, SLEEPING),
            (FAILED, ACTIVE),
            (FAILED, COMPLETE),
            (COMPLETE, FAILED),
        ],
    )
    def test_terminal_states_cannot_be_left(
        self, current: ThreadStatus, target: ThreadStatus
    ) -> None:
        with pytest.raises(InvalidStatusTransition):
            check_transition(current, target)

    def test_forced_failure_from_terminal(self) -> None:
        check_transition(COMPLETE, FAILED, force=True)

    def test_force_only_applies_to_failed(self) -> None:
        with pytest.raises(InvalidStatusTransition):
            check_transition(COMPLETE, ACTIVE, force=True)


class TestSettleStatus:
    @pytest.mark.parametrize("status", [SLEEPING, COMPLETE, FAILED])
    def test_keeps_status_set_during_exchange(self, status: ThreadStatus) -> None:
        assert settle_status(status) == status

    def test_active_stays_active(self) -> None:
        assert settle_status(ACTIVE) == ACTIVE
