import enum


class NotificationEvent(str, enum.Enum):
    REQUESTED = "approval.requested"
    APPROVED = "approval.approved"
    REJECTED = "approval.rejected"
