"""
OS-level notification scheduling.

``NotificationAdapter`` is the contract the reminder engine talks to. Its
schedule is treated as a cache that can silently fail, never as the source
of truth. ``DesktopNotificationAdapter`` backs it with an APScheduler
scheduler (optionally persisted through a SQLAlchemy job store) and shows
notifications on screen with plyer.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from plyer import notification as plyer_notification

from .models import NotificationContent, ScheduledNotification
from .policy import NotificationPolicy

logger = logging.getLogger(__name__)

APP_NAME = "Task Manager"


class NotificationError(Exception):
    """Raised when the platform notification backend rejects a request."""


DeliveryListener = Callable[[Dict[str, Any]], bool]


class NotificationAdapter:
    _delivery_listener: Optional[DeliveryListener] = None

    def set_delivery_listener(self, listener: Optional[DeliveryListener]) -> None:
        """Called with the content data when a scheduled notification comes due.

        A False return means the reminder was already delivered another way
        and the notification must not be shown.
        """
        self._delivery_listener = listener

    def request_permissions(self) -> bool:
        raise NotImplementedError

    def schedule_at(self, fire_time: datetime, content: NotificationContent) -> str:
        raise NotImplementedError

    def cancel(self, handle: str) -> None:
        raise NotImplementedError

    def cancel_all(self) -> None:
        raise NotImplementedError

    def list_scheduled(self) -> List[ScheduledNotification]:
        raise NotImplementedError

    def present(self, content: NotificationContent) -> None:
        raise NotImplementedError


def _parse_instant(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def show_notification(title: str, body: str) -> None:
    try:
        plyer_notification.notify(title=title, message=body, app_name=APP_NAME)
    except Exception as e:  # plyer raises NotImplementedError and backend-specific errors
        raise NotificationError(f"Could not show notification: {e}") from e


def deliver_scheduled_notification(title: str, body: str, data: Dict[str, Any], stale_after_seconds: int) -> None:
    """Job target for OS-level schedules. Module level so job stores can reference it."""
    policy = NotificationPolicy(stale_after=timedelta(seconds=stale_after_seconds))
    behavior = policy.decide(
        immediate=False,
        scheduled_for=_parse_instant(data.get("scheduled_for")),
        now=datetime.now(pytz.utc),
    )
    if not behavior.show_alert:
        logger.info(f"Suppressed stale notification for task {data.get('task_id')}")
        return
    try:
        show_notification(title, body)
    except NotificationError as e:
        logger.error(f"Scheduled notification for task {data.get('task_id')} failed: {e}")


class DesktopNotificationAdapter(NotificationAdapter):
    def __init__(
        self,
        enabled: bool = True,
        jobstore_url: Optional[str] = None,
        policy: Optional[NotificationPolicy] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.enabled = enabled
        self.policy = policy or NotificationPolicy()
        # Persisted jobs must reference a module-level target, so only
        # in-memory jobs report back to the delivery listener
        self.in_memory = jobstore_url is None
        if scheduler is None:
            jobstore = SQLAlchemyJobStore(url=jobstore_url) if jobstore_url else MemoryJobStore()
            scheduler = BackgroundScheduler(jobstores={"default": jobstore}, timezone=pytz.utc)
        self.scheduler = scheduler

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("OS notification scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("OS notification scheduler stopped")

    def request_permissions(self) -> bool:
        # Desktop notifications need no runtime grant; the user can opt out in config
        if not self.enabled:
            logger.info("Notifications disabled by configuration")
        return self.enabled

    def schedule_at(self, fire_time: datetime, content: NotificationContent) -> str:
        try:
            job = self.scheduler.add_job(
                self._deliver if self.in_memory else deliver_scheduled_notification,
                "date",
                run_date=fire_time,
                kwargs={
                    "title": content.title,
                    "body": content.body,
                    "data": dict(content.data),
                    "stale_after_seconds": int(self.policy.stale_after.total_seconds()),
                },
                misfire_grace_time=int(self.policy.stale_after.total_seconds()),
            )
        except Exception as e:  # job store and trigger errors
            raise NotificationError(f"Could not schedule notification: {e}") from e
        return job.id

    def _deliver(self, title: str, body: str, data: Dict[str, Any], stale_after_seconds: int) -> None:
        listener = self._delivery_listener
        if listener is not None and not listener(data):
            logger.debug(f"Notification for task {data.get('task_id')} already delivered, skipping")
            return
        deliver_scheduled_notification(title, body, data, stale_after_seconds)

    def cancel(self, handle: str) -> None:
        try:
            self.scheduler.remove_job(handle)
        except JobLookupError:
            pass
        except Exception as e:
            raise NotificationError(f"Could not cancel notification {handle}: {e}") from e

    def cancel_all(self) -> None:
        try:
            self.scheduler.remove_all_jobs()
        except Exception as e:
            raise NotificationError(f"Could not cancel notifications: {e}") from e

    def list_scheduled(self) -> List[ScheduledNotification]:
        try:
            jobs = self.scheduler.get_jobs()
        except Exception as e:
            raise NotificationError(f"Could not list notifications: {e}") from e
        return [ScheduledNotification(job.id, dict(job.kwargs.get("data") or {})) for job in jobs]

    def present(self, content: NotificationContent) -> None:
        behavior = self.policy.decide(immediate=True, scheduled_for=None, now=datetime.now(pytz.utc))
        if behavior.show_alert:
            show_notification(content.title, content.body)
