"""Approval workflow for monthly TBM reports.

Request -> approve | reject. Every operation takes the caller's user id
explicitly and checks it before touching storage. Terminal transitions go
through a single conditional update, so of two racing resolutions exactly one
wins and the other gets AlreadyProcessed.

Notifications run after the state change has been committed and never affect
the result handed back to the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from tbm_safety.core.errors import (
    AlreadyProcessed,
    AlreadyRequested,
    ApprovalValidationError,
    Forbidden,
    NotFound,
    Unauthorized,
)
from tbm_safety.db.models import MonthlyReportStatus, UserRole
from tbm_safety.infrastructure.notifications import NotificationDispatcher, NotificationEvent
from tbm_safety.observability.tracing import Span, log_event, new_trace_id
from .entities import (
    ApprovalFilters,
    ApprovalRequestEntity as ApprovalRequest,
    PageResult,
    Pagination,
    Sorting,
    UserRef,
)
from .repository import ApprovalRequestRepositoryProtocol
from .state_machine import ApprovalStatus, ensure_transition

# Schedules fn(*args) to run later, e.g. BackgroundTasks.add_task.
Defer = Callable[..., Any]

REQUESTER_ROLES = frozenset({UserRole.TEAM_LEADER.value, UserRole.ADMIN.value})

MIN_REPORT_YEAR = 2000
MAX_REPORT_YEAR = 2100

_REPORT_STATUS_FOR = {
    ApprovalStatus.APPROVED: MonthlyReportStatus.APPROVED,
    ApprovalStatus.REJECTED: MonthlyReportStatus.REJECTED,
}

_EVENT_FOR = {
    ApprovalStatus.APPROVED: NotificationEvent.APPROVED,
    ApprovalStatus.REJECTED: NotificationEvent.REJECTED,
}

_AUDIT_ACTION_FOR = {
    ApprovalStatus.APPROVED: "APPROVE",
    ApprovalStatus.REJECTED: "REJECT",
}


class ApprovalService:
    """Coordinates authorization, state transitions, audit and notification."""

    def __init__(
        self,
        repository: ApprovalRequestRepositoryProtocol,
        dispatcher: NotificationDispatcher,
        *,
        defer: Defer | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repo = repository
        self._dispatcher = dispatcher
        self._defer = defer
        self._clock = clock

    # -----------------------------------------
    # Queries
    # -----------------------------------------

    def get_approval_request(self, approval_id: str, caller_id: str | None) -> ApprovalRequest:
        """Return the approval with its report summary; only the approver may see it."""
        caller = self._authenticate(caller_id)
        approval = self._load(approval_id)
        self._authorize_approver(approval, caller, trace_id=new_trace_id())
        return approval

    def list_received(
        self,
        caller_id: str | None,
        *,
        status: ApprovalStatus | None = None,
        paging: Pagination = Pagination(),
        sorting: Sorting = Sorting(),
    ) -> PageResult:
        caller = self._authenticate(caller_id)
        return self._repo.get_all(
            filters=ApprovalFilters(status=status, approver_id=caller.id),
            paging=paging,
            sorting=sorting,
        )

    def list_sent(
        self,
        caller_id: str | None,
        *,
        status: ApprovalStatus | None = None,
        paging: Pagination = Pagination(),
        sorting: Sorting = Sorting(),
    ) -> PageResult:
        caller = self._authenticate(caller_id)
        return self._repo.get_all(
            filters=ApprovalFilters(status=status, requester_id=caller.id),
            paging=paging,
            sorting=sorting,
        )

    def list_pending(self, caller_id: str | None, *, paging: Pagination = Pagination()) -> PageResult:
        return self.list_received(caller_id, status=ApprovalStatus.PENDING, paging=paging)

    # -----------------------------------------
    # Commands
    # -----------------------------------------

    async def request_approval(self, team_id: int, year: int, month: int, caller_id: str | None) -> ApprovalRequest:
        """Open a new approval cycle for a team's monthly report."""
        trace_id = new_trace_id()
        caller = self._authenticate(caller_id)

        if caller.role not in REQUESTER_ROLES:
            log_event("approval.denied", trace_id=trace_id, action="request", user_id=caller.id)
            raise Forbidden("Only team leaders and admins can request approval")

        if not 1 <= month <= 12:
            raise ApprovalValidationError(f"Invalid month: {month}")
        if not MIN_REPORT_YEAR <= year <= MAX_REPORT_YEAR:
            raise ApprovalValidationError(f"Invalid year: {year}")

        team = self._repo.get_team(team_id)
        if team is None:
            raise NotFound(f"Team {team_id} not found")
        if not team.approver_id:
            raise ApprovalValidationError(
                f"Team '{team.name}' has no approver. Assign one in team management first."
            )

        report = self._repo.get_or_create_monthly_report(team_id, year, month)
        active = self._repo.find_active_for_report(report.id)
        if active is not None:
            raise AlreadyRequested(
                f"An approval request already exists for {team.name} {report.period}",
                approval=active,
            )

        created = self._repo.create_pending(
            report_id=report.id,
            requester_id=caller.id,
            approver_id=team.approver_id,
        )
        self._repo.set_report_status(report.id, MonthlyReportStatus.SUBMITTED)
        self._repo.record_audit("CREATE", created.id, caller.id, {"report_id": report.id})
        approval = self._repo.get(created.id)

        log_event(
            "approval.requested",
            trace_id=trace_id,
            approval_id=approval.id,
            report_id=report.id,
            requester_id=caller.id,
            approver_id=team.approver_id,
        )
        await self._dispatch(NotificationEvent.REQUESTED, approval)
        return approval

    async def approve(self, approval_id: str, caller_id: str | None, signature_image: str | None) -> ApprovalRequest:
        """Sign and approve a pending request."""
        return await self._resolve(
            approval_id,
            caller_id,
            target=ApprovalStatus.APPROVED,
            payload=signature_image,
            missing_message="A signature is required to approve",
            patch_field="signature_image",
        )

    async def reject(self, approval_id: str, caller_id: str | None, rejection_reason: str | None) -> ApprovalRequest:
        """Reject a pending request with a reason."""
        return await self._resolve(
            approval_id,
            caller_id,
            target=ApprovalStatus.REJECTED,
            payload=rejection_reason,
            missing_message="A rejection reason is required",
            patch_field="rejection_reason",
        )

    async def _resolve(
        self,
        approval_id: str,
        caller_id: str | None,
        *,
        target: ApprovalStatus,
        payload: str | None,
        missing_message: str,
        patch_field: str,
    ) -> ApprovalRequest:
        trace_id = new_trace_id()
        span = Span(name=f"approval.{target.value.lower()}", trace_id=trace_id)

        caller = self._authenticate(caller_id)
        approval = self._load(approval_id)
        self._authorize_approver(approval, caller, trace_id=trace_id)
        ensure_transition(approval.status, target, approval=approval)

        if payload is None or not payload.strip():
            raise ApprovalValidationError(missing_message)

        value = payload.strip() if patch_field == "rejection_reason" else payload
        won = self._repo.transition(
            approval_id,
            expected_status=ApprovalStatus.PENDING,
            patch={
                "status": target,
                "approved_at": self._clock(),
                patch_field: value,
            },
        )
        if not won:
            current = self._repo.get(approval_id)
            log_event(
                "approval.conflict",
                trace_id=trace_id,
                approval_id=approval_id,
                attempted=target.value,
                current=current.status.value if current else None,
            )
            raise AlreadyProcessed(
                f"Approval request is already {current.status.value if current else 'resolved'}",
                approval=current,
            )

        self._repo.set_report_status(approval.report_id, _REPORT_STATUS_FOR[target])
        details = {"rejection_reason": value} if target == ApprovalStatus.REJECTED else None
        self._repo.record_audit(_AUDIT_ACTION_FOR[target], approval_id, caller.id, details)
        resolved = self._repo.get(approval_id)

        span.end()
        log_event(_EVENT_FOR[target].value, trace_id=trace_id, span=span, approval_id=approval_id, approver_id=caller.id)
        await self._dispatch(_EVENT_FOR[target], resolved)
        return resolved

    # -----------------------------------------
    # Helpers
    # -----------------------------------------

    def _authenticate(self, caller_id: str | None) -> UserRef:
        if not caller_id:
            raise Unauthorized("Login required")
        caller = self._repo.get_user(caller_id)
        if caller is None:
            raise Unauthorized("Unknown user")
        return caller

    def _load(self, approval_id: str) -> ApprovalRequest:
        approval = self._repo.get(approval_id)
        if approval is None:
            raise NotFound(f"Approval request {approval_id} not found")
        return approval

    @staticmethod
    def _authorize_approver(approval: ApprovalRequest, caller: UserRef, *, trace_id: str) -> None:
        if approval.approver_id != caller.id:
            log_event("approval.denied", trace_id=trace_id, approval_id=approval.id, user_id=caller.id)
            raise Forbidden("You are not the approver of this request")

    async def _dispatch(self, event: NotificationEvent, approval: ApprovalRequest) -> None:
        if self._defer is not None:
            self._defer(self._notify, event, approval)
            return
        await self._notify(event, approval)

    async def _notify(self, event: NotificationEvent, approval: ApprovalRequest) -> None:
        try:
            await self._dispatcher.notify(event, approval)
        except Exception as exc:  # noqa: BLE001 - delivery failures never undo a committed transition
            log_event(
                "notification.failed",
                trace_id=new_trace_id(),
                approval_id=approval.id,
                notification=event.value,
                error=f"{type(exc).__name__}: {exc}",
            )
