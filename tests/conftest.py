from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tbm_safety.db.connection import init_db
from tbm_safety.db.models import DailyReport, Team, User, UserRole
from tbm_safety.domain.approval.repository import ApprovalRequestRepository
from tbm_safety.domain.approval.service import ApprovalService

from tests.fixtures.recording_dispatcher import RecordingDispatcher

SIGNATURE = "data:image/png;base64,AAAA"


@dataclass(frozen=True)
class World:
    admin_id: str = "admin"
    leader_id: str = "leader"
    approver_id: str = "u1"
    outsider_id: str = "worker"
    team_id: int = 0
    orphan_team_id: int = 0
    year: int = 2026
    month: int = 9


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def world(db) -> World:
    db.add_all(
        [
            User(id="admin", username="admin", name="Admin", email="admin@example.com", role=UserRole.ADMIN),
            User(id="leader", username="leader", name="Kim Leader", email="leader@example.com", role=UserRole.TEAM_LEADER),
            User(id="u1", username="approver", name="Park Approver", email="approver@example.com", role=UserRole.APPROVER),
            User(id="worker", username="worker", name="Lee Worker", email=None, role=UserRole.WORKER),
        ]
    )
    team = Team(name="Assembly Line 1", approver_id="u1")
    orphan = Team(name="Night Shift", approver_id=None)
    db.add_all([team, orphan])
    db.flush()
    db.add_all(
        [
            DailyReport(team_id=team.id, report_date=date(2026, 9, 1), attendee_count=8),
            DailyReport(team_id=team.id, report_date=date(2026, 9, 2), attendee_count=7),
            DailyReport(team_id=team.id, report_date=date(2026, 9, 3), attendee_count=9),
            # Outside the reported month
            DailyReport(team_id=team.id, report_date=date(2026, 10, 1), attendee_count=5),
        ]
    )
    db.commit()
    return World(team_id=team.id, orphan_team_id=orphan.id)


@pytest.fixture
def repo(db) -> ApprovalRequestRepository:
    return ApprovalRequestRepository(db)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def service(repo, dispatcher) -> ApprovalService:
    return ApprovalService(repo, dispatcher)


@pytest.fixture
def pending(repo, world):
    """A PENDING request for Assembly Line 1, 2026-09, awaiting u1."""
    report = repo.get_or_create_monthly_report(world.team_id, world.year, world.month)
    return repo.create_pending(
        report_id=report.id,
        requester_id=world.leader_id,
        approver_id=world.approver_id,
    )
