"""Legal status transitions of an approval request.

PENDING is the only non-terminal status. A request leaves it exactly once,
to APPROVED or REJECTED, and never moves again.
"""
import enum

from tbm_safety.core.errors import AlreadyProcessed


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


ALLOWED_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}


def is_terminal(status: ApprovalStatus) -> bool:
    return not ALLOWED_TRANSITIONS[ApprovalStatus(status)]


def can_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return ApprovalStatus(target) in ALLOWED_TRANSITIONS[ApprovalStatus(current)]


def ensure_transition(current: ApprovalStatus, target: ApprovalStatus, *, approval=None) -> None:
    """Raise AlreadyProcessed unless ``current -> target`` is legal."""
    if not can_transition(current, target):
        raise AlreadyProcessed(
            f"Approval request is already {ApprovalStatus(current).value}",
            approval=approval,
        )


def allowed_actions(status: ApprovalStatus) -> list[str]:
    """Actions the approver may still take, in display order."""
    actions = []
    if can_transition(status, ApprovalStatus.APPROVED):
        actions.append("approve")
    if can_transition(status, ApprovalStatus.REJECTED):
        actions.append("reject")
    return actions
