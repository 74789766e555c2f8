from dispatch.notifications.dispatcher import (
    ChannelAttempt,
    NotificationDispatcher,
    NotificationLog,
    NotificationOutcome,
)
from dispatch.notifications.gateway import (
    InMemoryGateway,
    LoggingGateway,
    NotificationGateway,
    Recipient,
)
from dispatch.notifications.templates import REMINDER_TEMPLATES, TEMPLATES, MessageTemplate

__all__ = [
    "ChannelAttempt",
    "InMemoryGateway",
    "LoggingGateway",
    "MessageTemplate",
    "NotificationDispatcher",
    "NotificationGateway",
    "NotificationLog",
    "NotificationOutcome",
    "REMINDER_TEMPLATES",
    "Recipient",
    "TEMPLATES",
]
