from __future__ import annotations

from typing import Any, Protocol

from app import events

NOTIFICATION_EVENT_TYPE = "leads.notification.requested"


class NotificationDispatcher(Protocol):
    def dispatch(self, channel: str, recipient: str, payload: dict[str, Any]) -> None: ...


class EventBusNotificationDispatcher:
    """Hands notifications to outbound senders through the in-process event bus."""

    def dispatch(self, channel: str, recipient: str, payload: dict[str, Any]) -> None:
        envelope = events.build_envelope(
            NOTIFICATION_EVENT_TYPE,
            {"channel": channel, "recipient": recipient, **payload},
        )
        events.publish(envelope)


default_dispatcher = EventBusNotificationDispatcher()
