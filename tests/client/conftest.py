import itertools
from datetime import datetime, timedelta

import pytest
import pytz
from apscheduler.schedulers.background import BackgroundScheduler

from client.storage import JsonFileStorage
from client.notifications import (
    NotificationAdapter,
    NotificationError,
    ReminderScheduler,
    ReminderStore,
    ScheduledNotification,
)

START = datetime(2025, 6, 1, 0, 0, tzinfo=pytz.utc)


class FakeNotificationAdapter(NotificationAdapter):
    """In-memory stand-in for the platform notification scheduler."""

    def __init__(self):
        self.granted = True
        self.fail_schedule = False
        self.fail_present = False
        self.scheduled = {}
        self.presented = []
        self.delivered = []
        self._ids = itertools.count(1)

    def request_permissions(self):
        return self.granted

    def schedule_at(self, fire_time, content):
        if self.fail_schedule:
            raise NotificationError("platform refused")
        handle = f"os-{next(self._ids)}"
        self.scheduled[handle] = (fire_time, content)
        return handle

    def cancel(self, handle):
        self.scheduled.pop(handle, None)

    def cancel_all(self):
        self.scheduled.clear()

    def list_scheduled(self):
        return [ScheduledNotification(h, dict(c.data)) for h, (_, c) in list(self.scheduled.items())]

    def present(self, content):
        if self.fail_present:
            raise NotificationError("no display")
        self.presented.append(content)

    def deliver(self, handle):
        """Fire a scheduled entry the way the platform would."""
        _, content = self.scheduled.pop(handle)
        listener = self._delivery_listener
        if listener is None or listener(content.data):
            self.delivered.append(content)

    def for_task(self, task_id):
        return [(f, c) for f, c in self.scheduled.values() if c.data.get("task_id") == task_id]


class FixedClock:
    def __init__(self, now):
        self.current = now

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def storage(tmp_path):
    return JsonFileStorage(tmp_path / "storage.json")


@pytest.fixture
def store(storage):
    return ReminderStore(storage)


@pytest.fixture
def adapter():
    return FakeNotificationAdapter()


@pytest.fixture
def timers():
    # Never started: jobs stay pending and can be inspected
    return BackgroundScheduler(timezone=pytz.utc)


@pytest.fixture
def reminders(store, adapter, timers, clock):
    return ReminderScheduler(store, adapter, timers=timers, tz=pytz.utc, clock=clock)
