"""
Reminder Scheduling Engine

Arms a reminder for a task on two paths at once: the OS-level notification
schedule (through a ``NotificationAdapter``) and an in-process fallback
timer. The fallback exists because OS schedules are unreliable for long
delays and backgrounded apps; it delivers as long as the process stays up.

Every armed reminder is also written to the ``ReminderStore`` before the
OS is asked, so that it can be restored after a restart.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import pytz
from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from client.storage import StorageError
from .adapter import NotificationAdapter, NotificationError
from .models import NotificationContent, ReminderRecord
from .store import ReminderStore
from .timing import as_calendar_date, compute_fire_time, localize

logger = logging.getLogger(__name__)

REMINDER_TITLE = "Task Reminder"
DUE_SOON_TITLE = "Task Due Soon"
DUE_SOON_LEAD = timedelta(hours=1)

FALLBACK_JOB_PREFIX = "fallback:"


def fallback_handle(task_id: str) -> str:
    return f"{FALLBACK_JOB_PREFIX}{task_id}"


class ReminderScheduler:
    def __init__(
        self,
        store: ReminderStore,
        adapter: NotificationAdapter,
        timers: Optional[BackgroundScheduler] = None,
        tz=pytz.utc,
        clock: Optional[Callable[[], datetime]] = None,
        misfire_grace_seconds: int = 60,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.tz = tz
        self.timers = timers or BackgroundScheduler(timezone=tz)
        self.misfire_grace_seconds = misfire_grace_seconds
        self._clock = clock or (lambda: datetime.now(pytz.utc))

        # task_id -> schedule_id of the reminder currently armed in this process
        self._live: Dict[str, str] = {}
        # task_id -> [lock, holders]; an entry is dropped once nobody holds or waits on it
        self._locks: Dict[str, List[Any]] = {}
        self._locks_guard = threading.Lock()

        self.timers.add_listener(self._on_fallback_missed, EVENT_JOB_MISSED)
        self.adapter.set_delivery_listener(self._claim_delivery)

    # =========================================================
    # LIFECYCLE
    # =========================================================
    def start(self) -> None:
        if not self.timers.running:
            self.timers.start()
            logger.info("Fallback reminder timers started")

    def shutdown(self) -> None:
        if self.timers.running:
            self.timers.shutdown(wait=False)
            logger.info("Fallback reminder timers stopped")

    def now(self) -> datetime:
        return localize(self._clock(), self.tz)

    @contextmanager
    def _task_lock(self, task_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(task_id)
            if entry is None:
                entry = self._locks[task_id] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[task_id]

    def is_armed(self, task_id: str) -> bool:
        return task_id in self._live

    # =========================================================
    # PERMISSIONS
    # =========================================================
    def request_permissions(self) -> bool:
        try:
            return bool(self.adapter.request_permissions())
        except NotificationError as e:
            logger.error(f"Error requesting notification permissions: {e}")
            return False

    # =========================================================
    # SCHEDULING
    # =========================================================
    def schedule_reminder(
        self,
        task_id,
        task_title: str,
        reminder_time: Optional[datetime],
        due_date: Optional[Union[date, datetime]] = None,
    ) -> Optional[str]:
        """Arm the reminder for a task, replacing any earlier one.

        Returns the OS schedule handle, a ``fallback:<task_id>`` marker when
        only the fallback timer could be armed, or None when nothing was
        scheduled (missing input, permission denied, fire time not in the
        future).
        """
        task_id = str(task_id) if task_id is not None else ""
        if not task_id or not task_title or reminder_time is None:
            logger.warning(f"Not scheduling reminder for task {task_id!r}: missing id, title or reminder time")
            return None

        if not self.request_permissions():
            return None

        with self._task_lock(task_id):
            self._cancel_locked(task_id)

            fire_at = compute_fire_time(reminder_time, due_date, self.tz)
            now = self.now()
            if fire_at <= now:
                logger.info(f"Reminder for task {task_id} at {fire_at.isoformat()} is not in the future, skipping")
                return None

            record = ReminderRecord(
                task_id=task_id,
                task_title=task_title,
                due_date=as_calendar_date(due_date, self.tz),
                scheduled_for=fire_at,
                created_at=now,
                schedule_id=uuid.uuid4().hex,
            )
            persisted = self._persist(record)

            handle = None
            try:
                handle = self.adapter.schedule_at(fire_at, self._reminder_content(record))
            except NotificationError as e:
                logger.warning(f"OS scheduling failed for task {task_id}, relying on fallback timer: {e}")

            if handle and persisted:
                record.notification_id = handle
                self._persist(record)

            self._arm_fallback(record)
            logger.info(f"Reminder for task {task_id} armed for {fire_at.isoformat()}")
            return handle or fallback_handle(task_id)

    def schedule_due_date_reminder(self, task_id, task_title: str, due_date: Optional[datetime]) -> Optional[str]:
        """OS-level "due soon" notification one hour before ``due_date``."""
        task_id = str(task_id) if task_id is not None else ""
        if not task_id or not task_title or due_date is None:
            return None
        if not self.request_permissions():
            return None

        fire_at = localize(due_date, self.tz) - DUE_SOON_LEAD
        if fire_at <= self.now():
            return None

        content = NotificationContent(
            title=DUE_SOON_TITLE,
            body=f"{task_title} is due in 1 hour",
            data={
                "task_id": task_id,
                "task_title": task_title,
                "due_date": localize(due_date, self.tz).isoformat(),
                "scheduled_for": fire_at.isoformat(),
            },
        )
        try:
            return self.adapter.schedule_at(fire_at, content)
        except NotificationError as e:
            logger.error(f"Error scheduling due date reminder for task {task_id}: {e}")
            return None

    def send_immediate_notification(self, title: str, body: str, data: Optional[dict] = None) -> None:
        if not self.request_permissions():
            return
        try:
            self.adapter.present(NotificationContent(title=title, body=body, data=data or {}))
        except NotificationError as e:
            logger.error(f"Error sending immediate notification: {e}")

    # =========================================================
    # CANCELLATION
    # =========================================================
    def cancel_reminder(self, task_id) -> None:
        task_id = str(task_id)
        with self._task_lock(task_id):
            self._cancel_locked(task_id)

    def _cancel_locked(self, task_id: str) -> None:
        self._cancel_os_locked(task_id)
        self._consume_locked(task_id)

    def _cancel_os_locked(self, task_id: str) -> None:
        try:
            scheduled = self.adapter.list_scheduled()
        except NotificationError as e:
            logger.warning(f"Could not list OS reminders for task {task_id}: {e}")
            return

        for entry in scheduled:
            if str(entry.data.get("task_id")) != task_id:
                continue
            try:
                self.adapter.cancel(entry.handle)
            except NotificationError as e:
                logger.warning(f"Error cancelling OS reminder {entry.handle} for task {task_id}: {e}")

    def _consume_locked(self, task_id: str) -> None:
        """Disarm the fallback timer and forget the stored record."""
        try:
            self.timers.remove_job(fallback_handle(task_id))
        except JobLookupError:
            pass
        self._live.pop(task_id, None)

        try:
            self.store.remove(task_id)
        except StorageError as e:
            logger.warning(f"Could not remove stored reminder for task {task_id}: {e}")

    def cancel_notification(self, handle: Optional[str]) -> None:
        if not handle:
            return
        try:
            self.adapter.cancel(handle)
        except NotificationError as e:
            logger.error(f"Error cancelling notification {handle}: {e}")

    def cancel_all_notifications(self) -> None:
        try:
            self.adapter.cancel_all()
        except NotificationError as e:
            logger.error(f"Error cancelling all notifications: {e}")

        for task_id in list(self._live):
            with self._task_lock(task_id):
                try:
                    self.timers.remove_job(fallback_handle(task_id))
                except JobLookupError:
                    pass
                self._live.pop(task_id, None)

        try:
            self.store.replace_all([])
        except StorageError as e:
            logger.warning(f"Could not clear stored reminders: {e}")

    # =========================================================
    # FALLBACK TIMER
    # =========================================================
    def _arm_fallback(self, record: ReminderRecord) -> None:
        self.timers.add_job(
            self._fire_fallback,
            "date",
            run_date=record.scheduled_for,
            id=fallback_handle(record.task_id),
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_seconds,
            kwargs={
                "task_id": record.task_id,
                "schedule_id": record.schedule_id,
                "task_title": record.task_title,
                "due_date": record.due_date.isoformat() if record.due_date else None,
            },
        )
        self._live[record.task_id] = record.schedule_id

    def _fire_fallback(self, task_id: str, schedule_id: str, task_title: str, due_date: Optional[str] = None) -> None:
        with self._task_lock(task_id):
            if self._live.get(task_id) != schedule_id:
                logger.debug(f"Stale fallback timer for task {task_id} ignored")
                return
            del self._live[task_id]
            self._cancel_os_locked(task_id)

            content = NotificationContent(
                title=REMINDER_TITLE,
                body=f"Don't forget: {task_title}",
                data={"task_id": task_id, "task_title": task_title, "due_date": due_date, "fallback": True},
            )
            try:
                self.adapter.present(content)
                logger.info(f"Fallback reminder delivered for task {task_id}")
            except NotificationError as e:
                logger.error(f"Fallback reminder for task {task_id} failed: {e}")

            try:
                self.store.remove(task_id)
            except StorageError as e:
                logger.warning(f"Could not remove stored reminder for task {task_id}: {e}")

    def _claim_delivery(self, data: Dict[str, Any]) -> bool:
        """Delivery listener for OS schedules: the first path to fire wins."""
        task_id = data.get("task_id")
        schedule_id = data.get("schedule_id")
        if not task_id or not schedule_id:
            return True

        task_id = str(task_id)
        with self._task_lock(task_id):
            if task_id in self._live:
                if self._live[task_id] != schedule_id:
                    return False
            elif not self._is_stored(task_id, schedule_id):
                # Fallback already fired, or the reminder was cancelled
                return False
            self._consume_locked(task_id)
            logger.info(f"Reminder delivered by OS schedule for task {task_id}")
            return True

    def _on_fallback_missed(self, event: JobExecutionEvent) -> None:
        if not event.job_id.startswith(FALLBACK_JOB_PREFIX):
            return
        task_id = event.job_id[len(FALLBACK_JOB_PREFIX):]
        with self._task_lock(task_id):
            if self.timers.get_job(event.job_id) is not None:
                # Re-armed since the missed run
                return
            if self._live.pop(task_id, None) is not None:
                logger.warning(f"Fallback reminder for task {task_id} missed its run at {event.scheduled_run_time}")

    # =========================================================
    # HELPERS
    # =========================================================
    def _persist(self, record: ReminderRecord) -> bool:
        try:
            self.store.put(record)
            return True
        except StorageError as e:
            logger.warning(f"Reminder for task {record.task_id} will not survive a restart: {e}")
            return False

    def _is_stored(self, task_id: str, schedule_id: str) -> bool:
        try:
            record = self.store.get(task_id)
        except StorageError as e:
            logger.warning(f"Could not read stored reminder for task {task_id}: {e}")
            return False
        return record is not None and record.schedule_id == schedule_id

    @staticmethod
    def _reminder_content(record: ReminderRecord) -> NotificationContent:
        return NotificationContent(
            title=REMINDER_TITLE,
            body=f"Don't forget: {record.task_title}",
            data={
                "task_id": record.task_id,
                "task_title": record.task_title,
                "due_date": record.due_date.isoformat() if record.due_date else None,
                "scheduled_for": record.scheduled_for.isoformat(),
                "schedule_id": record.schedule_id,
            },
        )
