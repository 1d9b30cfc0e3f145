"""Thread status state machine.

    active   -> sleeping   (schedule_wake)
    sleeping -> active     (wake fired, or a new inbound message)
    active   -> complete   (complete_task)
    sleeping -> complete
    active   -> failed
    sleeping -> failed
    *        -> failed     (forced, on execution error)

complete and failed are terminal: nothing else may leave them.
"""

from __future__ import annotations

from nexus_agent.errors import InvalidStatusTransition
from nexus_agent.threads.schemas import ThreadStatus

_ALLOWED: dict[ThreadStatus, frozenset[ThreadStatus]] = {
    ThreadStatus.ACTIVE: frozenset(
        {ThreadStatus.SLEEPING, ThreadStatus.COMPLETE, ThreadStatus.FAILED}
    ),
    ThreadStatus.SLEEPING: frozenset(
        {ThreadStatus.ACTIVE, ThreadStatus.COMPLETE, ThreadStatus.FAILED}
    ),
    ThreadStatus.COMPLETE: frozenset(),
    ThreadStatus.FAILED: frozenset(),
}


def check_transition(
    current: ThreadStatus,
    target: ThreadStatus,
    *,
    force: bool = False,
) -> None:
    """Validate a status change.

    Args:
        current: Status currently stored on the thread.
        target: Requested status.
        force: Allow moving to FAILED from any state.

    Raises:
        InvalidStatusTransition: If the change is not permitted.
    """
    if current == target:
        return
    if force and target == ThreadStatus.FAILED:
        return
    if target not in _ALLOWED[current]:
        raise InvalidStatusTransition(current.value, target.value)


def settle_status(current: ThreadStatus) -> ThreadStatus:
    """Status a thread should hold once an exchange has finished.

    A thread that scheduled a wake, completed its task or was failed during
    the exchange keeps that status; anything else returns to active.
    """
    if current in (ThreadStatus.SLEEPING, ThreadStatus.COMPLETE, ThreadStatus.FAILED):
        return current
    return ThreadStatus.ACTIVE
