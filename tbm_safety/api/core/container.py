# --------------------------------
# DI container
# --------------------------------
from functools import lru_cache
from typing import Optional

from fastapi import BackgroundTasks, Depends, Header
from sqlalchemy.orm import Session

from tbm_safety.config import Settings, settings
from tbm_safety.db.connection import get_db
from tbm_safety.domain.approval.repository import ApprovalRequestRepository
from tbm_safety.domain.approval.service import ApprovalService
from tbm_safety.infrastructure.notifications import (
    EmailNotificationDispatcher,
    NoopNotificationDispatcher,
    NotificationDispatcher,
)


class Container:
    def __init__(self, config: Settings = settings):
        if config.notifications_enabled:
            self._dispatcher = EmailNotificationDispatcher(
                base_url=config.notification_base_url,
                public_base_url=config.public_base_url,
                mail_from=config.mail_from,
                timeout=config.notification_timeout_seconds,
            )
        else:
            self._dispatcher = NoopNotificationDispatcher()

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher


@lru_cache
def get_container():
    return Container()


def get_approval_repo(
    db: Session = Depends(get_db),
) -> ApprovalRequestRepository:
    return ApprovalRequestRepository(db)


def get_approval_service(
    background_tasks: BackgroundTasks,
    approval_repository: ApprovalRequestRepository = Depends(get_approval_repo),
    container: Container = Depends(get_container),
) -> ApprovalService:
    # Notifications go out after the response has been sent.
    return ApprovalService(
        approval_repository,
        container.dispatcher,
        defer=background_tasks.add_task,
    )


def get_caller_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Caller identity as asserted by the authenticating gateway."""
    return x_user_id or None
