from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from tbm_safety.domain.approval.entities import ApprovalRequestEntity, PageResult
from tbm_safety.domain.approval.service import MAX_REPORT_YEAR, MIN_REPORT_YEAR
from tbm_safety.domain.approval.state_machine import ApprovalStatus


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


class ApprovalSortField(str, Enum):
    requested_at = "requested_at"
    approved_at = "approved_at"
    status = "status"


class StatusFilter(str, Enum):
    ALL = "ALL"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalListQuery(BaseModel):
    """
    Query filters for listing approval requests.

    All fields are optional.
    """

    status: StatusFilter = Field(
        default=StatusFilter.ALL,
        description="Filter approvals by status, or ALL"
    )

    # Pagination
    limit: int = Field(
        default=50,
        ge=1,
        le=100,
        description="Maximum number of records to return (1-100)"
    )

    offset: int = Field(
        default=0,
        ge=0,
        description="Number of records to skip (pagination)"
    )

    # Sorting
    sort_by: ApprovalSortField = Field(
        default=ApprovalSortField.requested_at,
        description="Field to sort by"
    )
    sort_order: SortOrder = Field(
        default=SortOrder.desc,
        description="Sort order (asc or desc)"
    )

    def status_filter(self) -> ApprovalStatus | None:
        if self.status == StatusFilter.ALL:
            return None
        return ApprovalStatus(self.status.value)


# Payload fields are optional so that a missing value reaches the service
# and comes back as a validation_error (400) like any other bad payload.
class ApproveIn(BaseModel):
    signature: Optional[str] = Field(default=None, description="Signature image, e.g. a data URI")


class RejectIn(BaseModel):
    rejection_reason: Optional[str] = Field(default=None, description="Why the report is rejected")


class ApprovalRequestIn(BaseModel):
    team_id: int
    year: int = Field(ge=MIN_REPORT_YEAR, le=MAX_REPORT_YEAR)
    month: int


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class ReportSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    team_id: int
    team_name: str
    year: int
    month: int
    period: str
    status: str
    daily_report_count: int
    total_attendees: int


class ApprovalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: ApprovalStatus
    report_id: str
    requester_id: str
    approver_id: str
    requested_at: datetime
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    signature_image: Optional[str] = None
    requester: Optional[UserOut] = None
    approver: Optional[UserOut] = None
    monthly_report: Optional[ReportSummaryOut] = None
    allowed_actions: List[str] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, approval: ApprovalRequestEntity) -> "ApprovalOut":
        return cls.model_validate(approval)


class ErrorOut(BaseModel):
    code: str
    message: str
    approval: Optional[ApprovalOut] = None


T = TypeVar("T")


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    has_next: bool
    has_previous: bool


class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    meta: PaginationMeta


def to_paginated(page: PageResult) -> PaginatedResponse[ApprovalOut]:
    return PaginatedResponse[ApprovalOut](
        data=[ApprovalOut.from_entity(a) for a in page.data],
        meta=PaginationMeta(
            total=page.meta.total,
            limit=page.meta.limit,
            offset=page.meta.offset,
            has_next=page.meta.has_next,
            has_previous=page.meta.has_previous,
        ),
    )
