# ============================================================
# DB access layer
# ============================================================
from __future__ import annotations

import calendar
from datetime import date
from typing import Any, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tbm_safety.core.errors import AlreadyRequested
from tbm_safety.db.models import (
    ApprovalRequest as ApprovalRequestRow,
    AuditLog,
    DailyReport,
    MonthlyReport,
    MonthlyReportStatus,
    Team,
    User,
)
from .entities import (
    ApprovalFilters,
    ApprovalRequestEntity as ApprovalRequest,
    PageResult,
    Pagination,
    ReportSummary,
    Sorting,
    TeamRef,
    UserRef,
    build_page,
)
from .state_machine import ApprovalStatus

# Columns a terminal transition may write.
TRANSITION_FIELDS = frozenset({"status", "approved_at", "rejection_reason", "signature_image"})


class ApprovalRequestRepositoryProtocol(Protocol):
    def get(self, approval_id: str) -> ApprovalRequest | None:
        """Get an approval by id, joined with its report summary"""
        ...

    def create_pending(self, report_id: str, requester_id: str, approver_id: str) -> ApprovalRequest:
        """Create a new pending approval; AlreadyRequested if the report already has an active one"""
        ...

    def transition(self, approval_id: str, *, expected_status: ApprovalStatus, patch: dict[str, Any]) -> bool:
        """Apply ``patch`` only if the stored status still equals ``expected_status``"""
        ...

    def get_all(self, filters: ApprovalFilters, paging: Pagination, sorting: Sorting) -> PageResult:
        """Get approvals matching the filters"""
        ...

    def find_active_for_report(self, report_id: str) -> ApprovalRequest | None:
        """Get the pending or approved request of a monthly report"""
        ...

    def get_user(self, user_id: str) -> UserRef | None:
        ...

    def get_team(self, team_id: int) -> TeamRef | None:
        ...

    def get_or_create_monthly_report(self, team_id: int, year: int, month: int) -> ReportSummary:
        ...

    def set_report_status(self, report_id: str, status: MonthlyReportStatus) -> None:
        ...

    def record_audit(self, action: str, entity_id: str, user_id: str | None, details: dict[str, Any] | None = None) -> None:
        ...


class ApprovalRequestRepository(ApprovalRequestRepositoryProtocol):
    # Allowed sort columns at persistence layer
    _SORT_COLUMNS = {
        "requested_at": ApprovalRequestRow.requested_at,
        "approved_at": ApprovalRequestRow.approved_at,
        "status": ApprovalRequestRow.status,
    }

    def __init__(self, db: Session):
        self.db = db

    def get(self, approval_id: str) -> ApprovalRequest | None:
        row = self.db.get(ApprovalRequestRow, approval_id)
        if row is None:
            return None
        # Another session may have resolved it since this session last looked.
        self.db.refresh(row)
        return self._to_entity(row)

    def create_pending(self, report_id: str, requester_id: str, approver_id: str) -> ApprovalRequest:
        row = ApprovalRequestRow(
            report_id=report_id,
            requester_id=requester_id,
            approver_id=approver_id,
            status=ApprovalStatus.PENDING,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Lost to another request for the same report (unique active-request index).
            self.db.rollback()
            raise AlreadyRequested(
                "An approval request already exists for this report",
                approval=self.find_active_for_report(report_id),
            ) from exc
        self.db.refresh(row)
        return self._to_entity(row)

    def transition(self, approval_id: str, *, expected_status: ApprovalStatus, patch: dict[str, Any]) -> bool:
        """Conditional update; returns True when this call won the row.

        The status guard lives in the WHERE clause, so two racing callers
        cannot both match a PENDING row.
        """
        unknown = set(patch) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        stmt = (
            update(ApprovalRequestRow)
            .where(ApprovalRequestRow.id == approval_id)
            .where(ApprovalRequestRow.status == expected_status)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def get_all(self, filters: ApprovalFilters, paging: Pagination, sorting: Sorting) -> PageResult:
        """
        Retrieve approval requests matching the given filters.

        All filters are optional.
        Pagination is always applied.
        """
        conditions = []
        if filters.status:
            conditions.append(ApprovalRequestRow.status == ApprovalStatus(filters.status))
        if filters.requester_id:
            conditions.append(ApprovalRequestRow.requester_id == filters.requester_id)
        if filters.approver_id:
            conditions.append(ApprovalRequestRow.approver_id == filters.approver_id)

        total = self.db.scalar(
            select(func.count()).select_from(ApprovalRequestRow).where(*conditions)
        )

        sort_col = self._SORT_COLUMNS.get(sorting.sort_by, ApprovalRequestRow.requested_at)
        order = sort_col.asc() if sorting.sort_order == "asc" else sort_col.desc()

        rows = self.db.scalars(
            select(ApprovalRequestRow)
            .where(*conditions)
            .order_by(order, ApprovalRequestRow.id)
            .limit(paging.limit)
            .offset(paging.offset)
        ).all()

        return build_page([self._to_entity(r) for r in rows], int(total or 0), paging)

    def find_active_for_report(self, report_id: str) -> ApprovalRequest | None:
        row = self.db.scalars(
            select(ApprovalRequestRow)
            .where(ApprovalRequestRow.report_id == report_id)
            .where(ApprovalRequestRow.status.in_([ApprovalStatus.PENDING, ApprovalStatus.APPROVED]))
            .order_by(ApprovalRequestRow.requested_at.desc())
        ).first()
        return self._to_entity(row) if row is not None else None

    def get_user(self, user_id: str) -> UserRef | None:
        user = self.db.get(User, user_id)
        return self._to_user(user) if user is not None else None

    def get_team(self, team_id: int) -> TeamRef | None:
        team = self.db.get(Team, team_id)
        if team is None:
            return None
        return TeamRef(id=team.id, name=team.name, approver_id=team.approver_id)

    def get_or_create_monthly_report(self, team_id: int, year: int, month: int) -> ReportSummary:
        report = self.db.scalars(
            select(MonthlyReport).where(
                MonthlyReport.team_id == team_id,
                MonthlyReport.year == year,
                MonthlyReport.month == month,
            )
        ).first()
        if report is None:
            report = MonthlyReport(team_id=team_id, year=year, month=month, status=MonthlyReportStatus.DRAFT)
            self.db.add(report)
            try:
                self.db.commit()
            except IntegrityError:
                # Created concurrently; use the stored row.
                self.db.rollback()
                report = self.db.scalars(
                    select(MonthlyReport).where(
                        MonthlyReport.team_id == team_id,
                        MonthlyReport.year == year,
                        MonthlyReport.month == month,
                    )
                ).one()
            else:
                self.db.refresh(report)
        return self._to_summary(report)

    def set_report_status(self, report_id: str, status: MonthlyReportStatus) -> None:
        self.db.execute(
            update(MonthlyReport)
            .where(MonthlyReport.id == report_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def record_audit(self, action: str, entity_id: str, user_id: str | None, details: dict[str, Any] | None = None) -> None:
        self.db.add(
            AuditLog(
                action=action,
                entity_type="APPROVAL",
                entity_id=entity_id,
                user_id=user_id,
                details=details,
            )
        )
        self.db.commit()

    # --- mapping ---

    def _to_entity(self, row: ApprovalRequestRow) -> ApprovalRequest:
        return ApprovalRequest(
            id=row.id,
            report_id=row.report_id,
            requester_id=row.requester_id,
            approver_id=row.approver_id,
            status=ApprovalStatus(row.status),
            requested_at=row.requested_at,
            approved_at=row.approved_at,
            rejection_reason=row.rejection_reason,
            signature_image=row.signature_image,
            requester=self._to_user(row.requester) if row.requester else None,
            approver=self._to_user(row.approver) if row.approver else None,
            monthly_report=self._to_summary(row.monthly_report) if row.monthly_report else None,
        )

    def _to_summary(self, report: MonthlyReport) -> ReportSummary:
        first = date(report.year, report.month, 1)
        last = date(report.year, report.month, calendar.monthrange(report.year, report.month)[1])
        count, attendees = self.db.execute(
            select(func.count(DailyReport.id), func.coalesce(func.sum(DailyReport.attendee_count), 0))
            .where(DailyReport.team_id == report.team_id)
            .where(DailyReport.report_date.between(first, last))
        ).one()
        return ReportSummary(
            id=report.id,
            team_id=report.team_id,
            team_name=report.team.name if report.team else "",
            year=report.year,
            month=report.month,
            status=MonthlyReportStatus(report.status).value,
            daily_report_count=int(count),
            total_attendees=int(attendees),
        )

    @staticmethod
    def _to_user(user: User) -> UserRef:
        return UserRef(
            id=user.id,
            username=user.username,
            name=user.name,
            email=user.email,
            role=user.role.value if user.role else None,
        )
