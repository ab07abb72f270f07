"""Insert demo users, a team and one month of daily TBM reports.

Safe to run more than once: existing rows are left alone.

    python -m tbm_safety.scripts.seed --year 2026 --month 9
"""
from __future__ import annotations

import argparse
import calendar
import json
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from tbm_safety.db.connection import SessionLocal, init_db
from tbm_safety.db.models import DailyReport, Team, User, UserRole

DEMO_USERS = [
    {"id": "admin", "username": "admin", "name": "Administrator", "email": "admin@example.com", "role": UserRole.ADMIN},
    {"id": "leader", "username": "leader", "name": "Team Leader", "email": "leader@example.com", "role": UserRole.TEAM_LEADER},
    {"id": "approver", "username": "approver", "name": "Plant Manager", "email": "approver@example.com", "role": UserRole.APPROVER},
]

DEMO_TEAM = "Assembly Line 1"


def seed(db: Session, *, year: int, month: int) -> dict[str, int]:
    created = {"users": 0, "teams": 0, "daily_reports": 0}

    for data in DEMO_USERS:
        if db.get(User, data["id"]) is None:
            db.add(User(**data))
            created["users"] += 1
    db.flush()

    team = db.scalars(select(Team).where(Team.name == DEMO_TEAM)).first()
    if team is None:
        team = Team(name=DEMO_TEAM, approver_id="approver")
        db.add(team)
        db.flush()
        created["teams"] += 1

    existing = set(
        db.scalars(select(DailyReport.report_date).where(DailyReport.team_id == team.id)).all()
    )
    for day in range(1, calendar.monthrange(year, month)[1] + 1):
        report_date = date(year, month, day)
        # TBM is held on working days only.
        if report_date.weekday() >= 5 or report_date in existing:
            continue
        db.add(DailyReport(team_id=team.id, report_date=report_date, attendee_count=8))
        created["daily_reports"] += 1

    db.commit()
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    today = date.today()
    parser.add_argument("--year", type=int, default=today.year)
    parser.add_argument("--month", type=int, default=today.month)
    args = parser.parse_args()

    init_db()
    with SessionLocal() as db:
        created = seed(db, year=args.year, month=args.month)
    print(json.dumps(created, indent=2))


if __name__ == "__main__":
    main()
