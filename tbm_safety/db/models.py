import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, DateTime, Date, Enum, Text, Integer, ForeignKey, UniqueConstraint, JSON, Index, text,
)
from sqlalchemy.orm import declarative_base, relationship

from tbm_safety.domain.approval.state_machine import ApprovalStatus

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    TEAM_LEADER = "TEAM_LEADER"
    APPROVER = "APPROVER"
    WORKER = "WORKER"


class MonthlyReportStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    username = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.WORKER)


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    approver_id = Column(String, ForeignKey("users.id"), nullable=True)

    approver = relationship("User")


class DailyReport(Base):
    """One TBM checklist submission; read-only input to the monthly summary."""

    __tablename__ = "daily_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)
    report_date = Column(Date, nullable=False)
    attendee_count = Column(Integer, nullable=False, default=0)
    remarks = Column(Text, nullable=True)


class MonthlyReport(Base):
    __tablename__ = "monthly_reports"
    __table_args__ = (UniqueConstraint("team_id", "year", "month"),)

    id = Column(String, primary_key=True, default=new_id)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    status = Column(Enum(MonthlyReportStatus), nullable=False, default=MonthlyReportStatus.DRAFT)

    team = relationship("Team")


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"
    # At most one open or approved request per monthly report; rejected ones are history.
    __table_args__ = (
        Index(
            "uq_approval_requests_active_report",
            "report_id",
            unique=True,
            sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
            postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
        ),
    )

    id = Column(String, primary_key=True, default=new_id)
    report_id = Column(String, ForeignKey("monthly_reports.id"), nullable=False, index=True)
    requester_id = Column(String, ForeignKey("users.id"), nullable=False)
    approver_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)
    requested_at = Column(DateTime, nullable=False, default=datetime.now)
    # Set once, when the request leaves PENDING, for either outcome.
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    signature_image = Column(Text, nullable=True)

    monthly_report = relationship("MonthlyReport")
    requester = relationship("User", foreign_keys=[requester_id])
    approver = relationship("User", foreign_keys=[approver_id])


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
