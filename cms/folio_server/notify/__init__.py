"""
Notifications for Folio.

- HookDispatcher: in-process, fire-and-forget named events
- WebhookNotifier: per-site outbound webhooks over HTTP
"""

from .dispatcher import ALL_EVENTS, HookDispatcher
from .webhooks import WebhookNotifier

__all__ = ["ALL_EVENTS", "HookDispatcher", "WebhookNotifier"]
