"""Approval notifications: events, email templates and dispatchers."""
from .events import NotificationEvent
from .templates import RenderedEmail, render_email
from .dispatcher import NotificationDispatcher, NoopNotificationDispatcher, EmailNotificationDispatcher
