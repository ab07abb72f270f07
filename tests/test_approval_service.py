from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from tbm_safety.core.errors import (
    AlreadyProcessed,
    AlreadyRequested,
    ApprovalValidationError,
    Forbidden,
    NotFound,
    Unauthorized,
)
from tbm_safety.db.models import AuditLog, MonthlyReport, MonthlyReportStatus
from tbm_safety.domain.approval.service import ApprovalService
from tbm_safety.domain.approval.state_machine import ApprovalStatus
from tbm_safety.infrastructure.notifications import NotificationEvent

from tests.conftest import SIGNATURE
from tests.fixtures.recording_dispatcher import FailingDispatcher


# -----------------------------------------
# get_approval_request
# -----------------------------------------

def test_get_approval_request_for_approver(service, pending) -> None:
    approval = service.get_approval_request(pending.id, "u1")

    assert approval.id == pending.id
    assert approval.status == ApprovalStatus.PENDING
    assert approval.monthly_report.daily_report_count == 3


@pytest.mark.parametrize("caller_id", [None, "", "ghost"])
def test_get_approval_request_requires_known_caller(service, pending, caller_id) -> None:
    with pytest.raises(Unauthorized):
        service.get_approval_request(pending.id, caller_id)


def test_get_approval_request_not_found(service, world) -> None:
    with pytest.raises(NotFound):
        service.get_approval_request("missing", "u1")


def test_get_approval_request_forbidden_for_other_users(service, pending) -> None:
    with pytest.raises(Forbidden):
        service.get_approval_request(pending.id, "leader")


# -----------------------------------------
# approve / reject
# -----------------------------------------

@pytest.mark.asyncio
async def test_approve_then_any_second_resolution_is_already_processed(service, repo, pending, dispatcher) -> None:
    approved = await service.approve(pending.id, "u1", SIGNATURE)

    assert approved.status == ApprovalStatus.APPROVED
    assert approved.approved_at is not None
    assert approved.signature_image == SIGNATURE
    resolved_at = approved.approved_at

    with pytest.raises(AlreadyProcessed) as exc:
        await service.approve(pending.id, "u1", SIGNATURE)
    assert exc.value.approval.status == ApprovalStatus.APPROVED

    with pytest.raises(AlreadyProcessed):
        await service.reject(pending.id, "u1", "x")

    stored = repo.get(pending.id)
    assert stored.status == ApprovalStatus.APPROVED
    assert stored.approved_at == resolved_at
    assert stored.rejection_reason is None
    assert dispatcher.events == [NotificationEvent.APPROVED]


@pytest.mark.asyncio
async def test_reject_requires_reason_then_succeeds(service, repo, pending, dispatcher) -> None:
    with pytest.raises(ApprovalValidationError):
        await service.reject(pending.id, "u1", "")
    assert repo.get(pending.id).status == ApprovalStatus.PENDING

    rejected = await service.reject(pending.id, "u1", "incomplete data")

    assert rejected.status == ApprovalStatus.REJECTED
    assert rejected.rejection_reason == "incomplete data"
    assert rejected.approved_at is not None
    assert dispatcher.events == [NotificationEvent.REJECTED]
    assert dispatcher.sent[0][1].rejection_reason == "incomplete data"


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", [None, "", "   ", "\n\t"])
async def test_reject_blank_reason_leaves_pending(service, repo, pending, dispatcher, reason) -> None:
    with pytest.raises(ApprovalValidationError):
        await service.reject(pending.id, "u1", reason)

    assert repo.get(pending.id).status == ApprovalStatus.PENDING
    assert dispatcher.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("signature", [None, "", "  "])
async def test_approve_without_signature_leaves_pending(service, repo, pending, signature) -> None:
    with pytest.raises(ApprovalValidationError):
        await service.approve(pending.id, "u1", signature)

    stored = repo.get(pending.id)
    assert stored.status == ApprovalStatus.PENDING
    assert stored.approved_at is None


@pytest.mark.asyncio
async def test_reject_reason_is_stripped(service, pending) -> None:
    rejected = await service.reject(pending.id, "u1", "  missing signatures  ")
    assert rejected.rejection_reason == "missing signatures"


@pytest.mark.asyncio
@pytest.mark.parametrize("caller_id", ["leader", "admin", "worker"])
async def test_non_approver_is_forbidden_and_record_unchanged(service, repo, pending, caller_id) -> None:
    with pytest.raises(Forbidden):
        await service.approve(pending.id, caller_id, SIGNATURE)
    with pytest.raises(Forbidden):
        await service.reject(pending.id, caller_id, "no")

    stored = repo.get(pending.id)
    assert stored.status == ApprovalStatus.PENDING
    assert stored.approved_at is None


@pytest.mark.asyncio
async def test_unauthenticated_and_missing_records(service, pending) -> None:
    with pytest.raises(Unauthorized):
        await service.approve(pending.id, None, SIGNATURE)
    with pytest.raises(NotFound):
        await service.reject("missing", "u1", "reason")


@pytest.mark.asyncio
async def test_approve_and_reject_in_one_event_loop_resolve_once(service, repo, pending) -> None:
    results = await asyncio.gather(
        service.approve(pending.id, "u1", SIGNATURE),
        service.reject(pending.id, "u1", "duplicate"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], AlreadyProcessed)
    assert repo.get(pending.id).status == successes[0].status


@pytest.mark.asyncio
async def test_lost_conditional_update_reports_already_processed(repo, pending, dispatcher) -> None:
    class StaleReadRepository:
        """Reads see PENDING, but someone else resolves the row before our write."""

        def __init__(self, inner) -> None:
            self._inner = inner
            self._stale = inner.get(pending.id)

        def __getattr__(self, name):
            return getattr(self._inner, name)

        def get(self, approval_id):
            if self._stale is not None:
                stale, self._stale = self._stale, None
                return stale
            return self._inner.get(approval_id)

        def transition(self, approval_id, *, expected_status, patch):
            self._inner.transition(
                approval_id,
                expected_status=ApprovalStatus.PENDING,
                patch={"status": ApprovalStatus.REJECTED, "approved_at": patch["approved_at"], "rejection_reason": "other"},
            )
            return self._inner.transition(approval_id, expected_status=expected_status, patch=patch)

    service = ApprovalService(StaleReadRepository(repo), dispatcher)

    with pytest.raises(AlreadyProcessed) as exc:
        await service.approve(pending.id, "u1", SIGNATURE)

    assert exc.value.approval.status == ApprovalStatus.REJECTED
    assert repo.get(pending.id).signature_image is None
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_side_effects_after_resolution(service, db, pending) -> None:
    await service.reject(pending.id, "u1", "incomplete data")

    report = db.get(MonthlyReport, pending.report_id)
    db.refresh(report)
    assert report.status == MonthlyReportStatus.REJECTED

    audit = db.scalars(select(AuditLog).where(AuditLog.entity_id == pending.id)).all()
    assert [a.action for a in audit] == ["REJECT"]
    assert audit[0].user_id == "u1"
    assert audit[0].details == {"rejection_reason": "incomplete data"}


# -----------------------------------------
# notifications
# -----------------------------------------

@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_approval(repo, pending, capsys) -> None:
    failing = FailingDispatcher()
    service = ApprovalService(repo, failing)

    approved = await service.approve(pending.id, "u1", SIGNATURE)

    assert approved.status == ApprovalStatus.APPROVED
    assert repo.get(pending.id).status == ApprovalStatus.APPROVED
    assert failing.calls == 1
    assert "notification.failed" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_deferred_notifications_are_scheduled_not_sent(repo, pending, dispatcher) -> None:
    scheduled = []
    service = ApprovalService(repo, dispatcher, defer=lambda fn, *args: scheduled.append((fn, args)))

    await service.approve(pending.id, "u1", SIGNATURE)

    assert dispatcher.sent == []
    assert len(scheduled) == 1

    fn, args = scheduled[0]
    await fn(*args)
    assert dispatcher.events == [NotificationEvent.APPROVED]


# -----------------------------------------
# request_approval
# -----------------------------------------

@pytest.mark.asyncio
async def test_request_approval_creates_pending_and_notifies_approver(service, db, world, dispatcher) -> None:
    approval = await service.request_approval(world.team_id, 2026, 9, "leader")

    assert approval.status == ApprovalStatus.PENDING
    assert approval.requester_id == "leader"
    assert approval.approver_id == "u1"
    assert approval.requested_at is not None
    assert approval.monthly_report.status == MonthlyReportStatus.SUBMITTED.value
    assert dispatcher.events == [NotificationEvent.REQUESTED]


@pytest.mark.asyncio
async def test_request_approval_refuses_duplicates_until_rejected(service, world) -> None:
    first = await service.request_approval(world.team_id, 2026, 9, "leader")

    with pytest.raises(AlreadyRequested) as exc:
        await service.request_approval(world.team_id, 2026, 9, "leader")
    assert exc.value.approval.id == first.id

    await service.reject(first.id, "u1", "fix attendance")
    second = await service.request_approval(world.team_id, 2026, 9, "leader")

    assert second.id != first.id
    assert second.report_id == first.report_id
    assert second.status == ApprovalStatus.PENDING


@pytest.mark.asyncio
async def test_request_approval_refused_after_approval(service, world) -> None:
    first = await service.request_approval(world.team_id, 2026, 9, "admin")
    await service.approve(first.id, "u1", SIGNATURE)

    with pytest.raises(AlreadyRequested):
        await service.request_approval(world.team_id, 2026, 9, "admin")


@pytest.mark.asyncio
async def test_request_approval_checks(service, world) -> None:
    with pytest.raises(Unauthorized):
        await service.request_approval(world.team_id, 2026, 9, None)
    with pytest.raises(Forbidden):
        await service.request_approval(world.team_id, 2026, 9, "worker")
    with pytest.raises(ApprovalValidationError):
        await service.request_approval(world.team_id, 2026, 13, "leader")
    with pytest.raises(NotFound):
        await service.request_approval(9999, 2026, 9, "leader")
    with pytest.raises(ApprovalValidationError):
        await service.request_approval(world.orphan_team_id, 2026, 9, "leader")


@pytest.mark.asyncio
@pytest.mark.parametrize("year", [0, -1, 1999, 2101])
async def test_request_approval_bad_year_creates_no_report(service, db, world, year) -> None:
    with pytest.raises(ApprovalValidationError):
        await service.request_approval(world.team_id, year, 9, "leader")

    assert db.scalars(select(MonthlyReport)).all() == []


# -----------------------------------------
# listings
# -----------------------------------------

@pytest.mark.asyncio
async def test_sent_and_received_lists(service, world) -> None:
    sept = await service.request_approval(world.team_id, 2026, 9, "leader")
    await service.request_approval(world.team_id, 2026, 8, "leader")
    await service.approve(sept.id, "u1", SIGNATURE)

    assert service.list_received("u1").meta.total == 2
    assert service.list_pending("u1").meta.total == 1
    assert service.list_received("u1", status=ApprovalStatus.APPROVED).data[0].id == sept.id
    assert service.list_sent("leader").meta.total == 2
    assert service.list_sent("u1").meta.total == 0

    with pytest.raises(Unauthorized):
        service.list_received(None)
