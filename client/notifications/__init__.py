from .adapter import DesktopNotificationAdapter, NotificationAdapter, NotificationError
from .models import NotificationContent, ReminderRecord, ScheduledNotification
from .policy import NotificationBehavior, NotificationPolicy
from .restore import restore_pending_reminders
from .scheduler import ReminderScheduler
from .store import ReminderStore

__all__ = [
    "DesktopNotificationAdapter",
    "NotificationAdapter",
    "NotificationBehavior",
    "NotificationContent",
    "NotificationError",
    "NotificationPolicy",
    "ReminderRecord",
    "ReminderScheduler",
    "ReminderStore",
    "ScheduledNotification",
    "restore_pending_reminders",
]
