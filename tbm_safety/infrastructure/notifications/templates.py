"""Email templates for approval notifications.

Templates use ``${var}`` placeholders and strict substitution, so a missing
variable fails loudly instead of sending a half-filled mail.
"""

from __future__ import annotations

from dataclasses import dataclass
from string import Template

from tbm_safety.domain.approval.entities import ApprovalRequestEntity
from .events import NotificationEvent

_SUBJECTS = {
    NotificationEvent.REQUESTED: "[Approval request] ${team} ${period} TBM report",
    NotificationEvent.APPROVED: "[Approved] ${team} ${period} TBM report",
    NotificationEvent.REJECTED: "[Rejected] ${team} ${period} TBM report",
}

_BODIES = {
    NotificationEvent.REQUESTED: (
        "Hello ${approver},\n\n"
        "${requester} has requested your approval of the ${period} TBM report of ${team}.\n\n"
        "Requested by: ${requester}\n"
        "Team: ${team}\n"
        "Period: ${period}\n\n"
        "Review and sign the report here: ${approval_url}\n"
    ),
    NotificationEvent.APPROVED: (
        "Hello ${requester},\n\n"
        "${approver} approved the ${period} TBM report of ${team}.\n\n"
        "Approved by: ${approver}\n"
        "Approved at: ${resolved_at}\n"
    ),
    NotificationEvent.REJECTED: (
        "Hello ${requester},\n\n"
        "${approver} rejected the ${period} TBM report of ${team}.\n\n"
        "Rejected by: ${approver}\n"
        "Reason: ${rejection_reason}\n\n"
        "Please correct the report and request approval again.\n"
    ),
}


@dataclass(frozen=True)
class RenderedEmail:
    to: str | None
    subject: str
    body: str


def recipient_for(event: NotificationEvent, approval: ApprovalRequestEntity):
    """Approver hears about new requests; the requester hears about outcomes."""
    if event == NotificationEvent.REQUESTED:
        return approval.approver
    return approval.requester


def render_email(
    event: NotificationEvent,
    approval: ApprovalRequestEntity,
    *,
    approval_url: str = "",
) -> RenderedEmail:
    report = approval.monthly_report
    variables = {
        "team": report.team_name if report else "",
        "period": report.period if report else "",
        "requester": approval.requester.display_name if approval.requester else approval.requester_id,
        "approver": approval.approver.display_name if approval.approver else approval.approver_id,
        "approval_url": approval_url,
        "resolved_at": approval.resolved_at.strftime("%Y-%m-%d %H:%M") if approval.resolved_at else "",
        "rejection_reason": approval.rejection_reason or "No reason given",
    }
    recipient = recipient_for(event, approval)
    return RenderedEmail(
        to=recipient.email if recipient else None,
        subject=Template(_SUBJECTS[event]).substitute(variables),
        body=Template(_BODIES[event]).substitute(variables),
    )
