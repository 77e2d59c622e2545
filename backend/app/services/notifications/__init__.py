"""
Notifications

Template rendering, per-user delivery, operator broadcasts and the
transactional outbox used by order workflow operations.
"""

from .templates import DEFAULT_TEMPLATES, NotificationTemplate, TemplateStore, render_template
from .dispatcher import NotificationDispatcher, ROLE_INBOXES, UnknownTemplate, inbox_ids_for
from .outbox import NotificationOutbox, outbox_summary

__all__ = [
    'DEFAULT_TEMPLATES',
    'NotificationTemplate',
    'TemplateStore',
    'render_template',
    'NotificationDispatcher',
    'ROLE_INBOXES',
    'UnknownTemplate',
    'inbox_ids_for',
    'NotificationOutbox',
    'outbox_summary',
]
