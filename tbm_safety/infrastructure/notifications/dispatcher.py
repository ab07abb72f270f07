"""Notification dispatchers.

A dispatcher is told about every approval transition after it has been
committed. Delivery is best effort: the approval service catches whatever a
dispatcher raises, so implementations are free to let errors propagate.
"""

from __future__ import annotations

from typing import Protocol

import httpx

from tbm_safety.domain.approval.entities import ApprovalRequestEntity
from tbm_safety.observability.tracing import log_event, new_trace_id
from .events import NotificationEvent
from .templates import render_email


def _provider_message_id(resp: httpx.Response) -> str | None:
    # Delivery already succeeded; an odd response body must not turn it into a failure.
    try:
        body = resp.json()
    except ValueError:
        return None
    return body.get("provider_message_id") if isinstance(body, dict) else None


class NotificationDispatcher(Protocol):
    async def notify(self, event: NotificationEvent, approval: ApprovalRequestEntity) -> None:
        ...


class NoopNotificationDispatcher:
    async def notify(self, event: NotificationEvent, approval: ApprovalRequestEntity) -> None:
        return None


class EmailNotificationDispatcher:
    """Send approval emails through the internal mail service over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        public_base_url: str = "",
        mail_from: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create an email dispatcher.

        Args:
            base_url: Base URL of the mail service (e.g. http://mail-svc:8001/v1).
            public_base_url: Base URL of the web app, used for approval links.
            mail_from: Sender address; the mail service default applies when unset.
            timeout: Per-request timeout in seconds.
            client: Optional injected httpx client for testing / transport control.
        """
        self._base_url = base_url.rstrip("/")
        self._public_base_url = public_base_url.rstrip("/")
        self._mail_from = mail_from
        self._timeout = timeout
        self._client = client

    def approval_url(self, approval_id: str) -> str:
        return f"{self._public_base_url}/approval/{approval_id}"

    async def notify(self, event: NotificationEvent, approval: ApprovalRequestEntity) -> None:
        email = render_email(event, approval, approval_url=self.approval_url(approval.id))
        trace_id = new_trace_id()

        if not email.to:
            log_event(
                "notification.skipped",
                trace_id=trace_id,
                approval_id=approval.id,
                notification=event.value,
                reason="recipient has no email address",
            )
            return

        payload = {"to": email.to, "subject": email.subject, "body": email.body}
        if self._mail_from:
            payload["from_address"] = self._mail_from

        url = f"{self._base_url}/notifications/send-email"
        if self._client is not None:
            resp = await self._client.post(url, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.post(url, json=payload, timeout=self._timeout)
        resp.raise_for_status()

        log_event(
            "notification.sent",
            trace_id=trace_id,
            approval_id=approval.id,
            notification=event.value,
            to=email.to,
            provider_message_id=_provider_message_id(resp),
        )
