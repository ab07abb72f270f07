# ---------------------------------
# TYPED EXCEPTIONS
# ---------------------------------
from __future__ import annotations

from typing import Any


class ApprovalError(Exception):
    """Base class for every error an approval operation can raise."""

    code = "approval_error"
    status_code = 400

    def __init__(self, message: str, *, approval: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.approval = approval


class NotFound(ApprovalError):
    code = "not_found"
    status_code = 404


class Unauthorized(ApprovalError):
    """No authenticated caller."""

    code = "unauthorized"
    status_code = 401


class Forbidden(ApprovalError):
    """Authenticated, but not the principal allowed to act."""

    code = "forbidden"
    status_code = 403


class AlreadyProcessed(ApprovalError):
    """The approval request already reached a terminal status.

    ``approval`` holds the record as it is now, so callers can show it.
    """

    code = "already_processed"
    status_code = 409


class AlreadyRequested(ApprovalError):
    code = "already_requested"
    status_code = 409


class ApprovalValidationError(ApprovalError):
    code = "validation_error"
    status_code = 400
