from fastapi import APIRouter, Depends, Query, status
from typing import Optional

from tbm_safety.api.core.container import get_approval_service, get_caller_id
from tbm_safety.api.schemas import (
    ApprovalListQuery,
    ApprovalOut,
    ApprovalRequestIn,
    ApproveIn,
    ErrorOut,
    PaginatedResponse,
    RejectIn,
    to_paginated,
)
from tbm_safety.domain.approval.entities import Pagination, Sorting
from tbm_safety.domain.approval.service import ApprovalService

_ERRORS = {
    400: {"model": ErrorOut},
    401: {"model": ErrorOut},
    403: {"model": ErrorOut},
    404: {"model": ErrorOut},
    409: {"model": ErrorOut},
}

router = APIRouter(prefix="/approvals", tags=["Approvals"], responses=_ERRORS)
monthly_router = APIRouter(prefix="/monthly-approvals", tags=["Approvals"], responses=_ERRORS)


@monthly_router.post(
    "/request",
    status_code=status.HTTP_201_CREATED,
    summary="Request approval of a monthly report",
    response_model=ApprovalOut,
)
async def request_monthly_approval(
    payload: ApprovalRequestIn,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ApprovalService = Depends(get_approval_service),
):
    """Open an approval request for a team's monthly TBM report; the team's approver is notified."""
    approval = await service.request_approval(
        team_id=payload.team_id,
        year=payload.year,
        month=payload.month,
        caller_id=caller_id,
    )
    return ApprovalOut.from_entity(approval)


def _page_args(q: ApprovalListQuery) -> dict:
    return {
        "status": q.status_filter(),
        "paging": Pagination(limit=q.limit, offset=q.offset),
        "sorting": Sorting(sort_by=q.sort_by.value, sort_order=q.sort_order.value),
    }


@router.get(
    "/received",
    summary="List approval requests addressed to me",
    response_model=PaginatedResponse[ApprovalOut],
)
async def list_received(
    q: ApprovalListQuery = Depends(),
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ApprovalService = Depends(get_approval_service),
):
    return to_paginated(service.list_received(caller_id, **_page_args(q)))


@router.get(
    "/sent",
    summary="List approval requests I sent",
    response_model=PaginatedResponse[ApprovalOut],
)
async def list_sent(
    q: ApprovalListQuery = Depends(),
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ApprovalService = Depends(get_approval_service),
):
    return to_paginated(service.list_sent(caller_id, **_page_args(q)))


@router.get(
    "/pending",
    summary="List approval requests waiting for my decision",
    response_model=PaginatedResponse[ApprovalOut],
)
async def list_pending(
    limit: int = Query(default=50, ge=1, le=100, description="Maximum number of records to return (1-100)"),
    offset: int = Query(default=0, ge=0, description="Number of records to skip (pagination)"),
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ApprovalService = Depends(get_approval_service),
):
    page = service.list_pending(caller_id, paging=Pagination(limit=limit, offset=offset))
    return to_paginated(page)


@router.get("/{approval_id}", response_model=ApprovalOut)
async def get_approval(
    approval_id: str,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ApprovalService = Depends(get_approval_service),
):
    """Get a specific approval."""
    return ApprovalOut.from_entity(service.get_approval_request(approval_id, caller_id))


@router.post("/{approval_id}/approve", response_model=ApprovalOut)
async def approve(
    approval_id: str,
    payload: ApproveIn,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ApprovalService = Depends(get_approval_service),
):
    approval = await service.approve(approval_id, caller_id, payload.signature)
    return ApprovalOut.from_entity(approval)


@router.post("/{approval_id}/reject", response_model=ApprovalOut)
async def reject(
    approval_id: str,
    payload: RejectIn,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ApprovalService = Depends(get_approval_service),
):
    approval = await service.reject(approval_id, caller_id, payload.rejection_reason)
    return ApprovalOut.from_entity(approval)
