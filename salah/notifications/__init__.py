from .models import EventKind, NotificationEvent, NotificationSettings
from .scheduler import NotificationScheduler
from .transport import DesktopNotificationTransport, NotificationTransport

__all__ = [
    "EventKind",
    "NotificationEvent",
    "NotificationSettings",
    "NotificationScheduler",
    "NotificationTransport",
    "DesktopNotificationTransport",
]
