# ============================================================
# Business/domain entities
# ============================================================
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from .state_machine import ApprovalStatus, allowed_actions

SortOrderLiteral = Literal["asc", "desc"]
ApprovalSortFieldLiteral = Literal["requested_at", "approved_at", "status"]


@dataclass(frozen=True)
class UserRef:
    id: str
    username: str
    name: str | None = None
    email: str | None = None
    role: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.username


@dataclass(frozen=True)
class ReportSummary:
    """Read-only view of the monthly report an approval is about."""

    id: str
    team_id: int
    team_name: str
    year: int
    month: int
    status: str
    daily_report_count: int = 0
    total_attendees: int = 0

    @property
    def period(self) -> str:
        return f"{self.year}-{self.month:02d}"


@dataclass
class ApprovalRequestEntity:
    id: str
    report_id: str
    requester_id: str
    approver_id: str
    status: ApprovalStatus
    requested_at: datetime
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    signature_image: str | None = None
    requester: UserRef | None = None
    approver: UserRef | None = None
    monthly_report: ReportSummary | None = None

    @property
    def resolved_at(self) -> datetime | None:
        """When the request left PENDING; same column for both outcomes."""
        return self.approved_at

    @property
    def allowed_actions(self) -> list[str]:
        return allowed_actions(self.status)


@dataclass(frozen=True)
class ApprovalFilters:
    status: Optional[ApprovalStatus] = None
    requester_id: Optional[str] = None
    approver_id: Optional[str] = None


@dataclass(frozen=True)
class Pagination:
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class Sorting:
    sort_by: ApprovalSortFieldLiteral = "requested_at"
    sort_order: SortOrderLiteral = "desc"


@dataclass(frozen=True)
class PageMeta:
    total: int
    limit: int
    offset: int
    has_next: bool
    has_previous: bool


@dataclass(frozen=True)
class PageResult:
    data: list[ApprovalRequestEntity] = field(default_factory=list)
    meta: PageMeta | None = None


def build_page(records: list[ApprovalRequestEntity], total: int, paging: Pagination) -> PageResult:
    return PageResult(
        data=records,
        meta=PageMeta(
            total=total,
            limit=paging.limit,
            offset=paging.offset,
            has_next=(paging.offset + paging.limit) < total,
            has_previous=paging.offset > 0,
        ),
    )


@dataclass(frozen=True)
class TeamRef:
    id: int
    name: str
    approver_id: str | None = None
