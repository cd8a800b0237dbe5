from .base import (
    LogNotificationSurface,
    Notification,
    NotificationDispatcher,
    NotificationSurface,
)
from .telegram import TelegramNotificationSurface, TelegramSendResult

__all__ = [
    "LogNotificationSurface",
    "Notification",
    "NotificationDispatcher",
    "NotificationSurface",
    "TelegramNotificationSurface",
    "TelegramSendResult",
]
