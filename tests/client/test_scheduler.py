import threading
from datetime import date, datetime, timedelta

import pytz
from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent

from client.storage import StorageError
from client.notifications import NotificationError, ReminderScheduler, ReminderStore, restore_pending_reminders


def utc(*args):
    return datetime(*args, tzinfo=pytz.utc)


def live_schedule_id(timers, task_id):
    job = timers.get_job(f"fallback:{task_id}")
    return job.kwargs["schedule_id"] if job else None


class BrokenStore(ReminderStore):
    def _load(self):
        raise StorageError("disk unavailable")

    def _save(self, records):
        raise StorageError("disk unavailable")


def test_due_date_and_reminder_time_scenario(reminders, store, adapter, timers):
    handle = reminders.schedule_reminder("t1", "Buy milk", datetime(2025, 6, 10, 9, 0), date(2025, 6, 10))

    assert handle == "os-1"
    record = store.get("t1")
    assert record.scheduled_for == utc(2025, 6, 10, 9, 0)
    assert record.due_date == date(2025, 6, 10)
    assert record.notification_id == "os-1"
    assert record.created_at == utc(2025, 6, 1)

    fire_time, content = adapter.scheduled["os-1"]
    assert fire_time == utc(2025, 6, 10, 9, 0)
    assert content.title == "Task Reminder"
    assert content.body == "Don't forget: Buy milk"
    assert content.data["task_id"] == "t1"

    job = timers.get_job("fallback:t1")
    assert job.trigger.run_date == utc(2025, 6, 10, 9, 0)

    reminders.cancel_reminder("t1")
    assert store.list_all() == []
    assert adapter.scheduled == {}
    assert timers.get_job("fallback:t1") is None

    assert restore_pending_reminders(reminders, store) == []
    assert adapter.scheduled == {}


def test_reminder_without_due_date_is_used_verbatim(reminders, store):
    reminders.schedule_reminder("t1", "Call", utc(2025, 6, 2, 7, 45, 30))

    assert store.get("t1").scheduled_for == utc(2025, 6, 2, 7, 45, 30)
    assert store.get("t1").due_date is None


def test_past_or_present_reminder_is_not_scheduled(reminders, store, adapter, timers, clock):
    assert reminders.schedule_reminder("t1", "Late", clock() - timedelta(minutes=1)) is None
    assert reminders.schedule_reminder("t2", "Now", clock()) is None

    assert store.list_all() == []
    assert adapter.scheduled == {}
    assert timers.get_jobs() == []


def test_past_reminder_still_clears_previous_one(reminders, store, timers, clock):
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=2))
    assert reminders.schedule_reminder("t1", "Task", clock() - timedelta(hours=2)) is None

    assert store.list_all() == []
    assert timers.get_job("fallback:t1") is None


def test_missing_inputs_are_a_silent_no_op(reminders, store, clock):
    later = clock() + timedelta(hours=1)
    assert reminders.schedule_reminder("", "Title", later) is None
    assert reminders.schedule_reminder("t1", "", later) is None
    assert reminders.schedule_reminder("t1", "Title", None) is None
    assert store.list_all() == []


def test_rescheduling_keeps_a_single_reminder(reminders, store, adapter, timers, clock):
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    first_schedule = live_schedule_id(timers, "t1")
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=3))

    records = store.list_all()
    assert len(records) == 1
    assert records[0].scheduled_for == clock() + timedelta(hours=3)
    assert len(adapter.for_task("t1")) == 1
    assert len(timers.get_jobs()) == 1
    assert timers.get_job("fallback:t1").trigger.run_date == clock() + timedelta(hours=3)

    # A timer left over from the first call finds nothing live and stays quiet
    reminders._fire_fallback("t1", first_schedule, "Task")
    assert adapter.presented == []
    assert store.get("t1") is not None


def test_fallback_fires_once_and_clears_record(reminders, store, adapter, timers, clock):
    reminders.schedule_reminder("t1", "Water plants", clock() + timedelta(minutes=30), None)
    schedule_id = live_schedule_id(timers, "t1")

    reminders._fire_fallback("t1", schedule_id, "Water plants")

    assert len(adapter.presented) == 1
    delivered = adapter.presented[0]
    assert delivered.body == "Don't forget: Water plants"
    assert delivered.data["fallback"] is True
    assert delivered.data["task_id"] == "t1"
    assert store.get("t1") is None
    assert not reminders.is_armed("t1")

    reminders._fire_fallback("t1", schedule_id, "Water plants")
    assert len(adapter.presented) == 1


def test_cancelled_reminder_does_not_fire_fallback(reminders, adapter, timers, clock):
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    schedule_id = live_schedule_id(timers, "t1")

    reminders.cancel_reminder("t1")
    reminders._fire_fallback("t1", schedule_id, "Task")

    assert adapter.presented == []


def test_os_failure_falls_back_to_timer(reminders, store, adapter, timers, clock):
    adapter.fail_schedule = True

    handle = reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))

    assert handle == "fallback:t1"
    assert store.get("t1").notification_id is None
    assert timers.get_job("fallback:t1") is not None


def test_permission_denied_schedules_nothing(reminders, store, adapter, timers, clock):
    adapter.granted = False

    assert reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1)) is None
    assert store.list_all() == []
    assert timers.get_jobs() == []


def test_store_failure_still_arms_fallback(storage, adapter, timers, clock):
    reminders = ReminderScheduler(BrokenStore(storage), adapter, timers=timers, tz=pytz.utc, clock=clock)

    handle = reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    assert handle == "os-1"
    schedule_id = live_schedule_id(timers, "t1")

    reminders._fire_fallback("t1", schedule_id, "Task")
    assert len(adapter.presented) == 1

    reminders.cancel_reminder("t1")
    assert adapter.scheduled == {}


def test_fallback_present_failure_still_clears_record(reminders, store, adapter, timers, clock):
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    adapter.fail_present = True

    reminders._fire_fallback("t1", live_schedule_id(timers, "t1"), "Task")

    assert store.get("t1") is None


def test_cancel_is_idempotent(reminders, store):
    reminders.cancel_reminder("never-scheduled")
    reminders.cancel_reminder("never-scheduled")
    assert store.list_all() == []


def test_numeric_task_ids_are_normalized(reminders, store, clock):
    reminders.schedule_reminder(42, "Task", clock() + timedelta(hours=1))
    assert store.get("42") is not None

    reminders.cancel_reminder(42)
    assert store.get("42") is None


def test_cancel_leaves_other_tasks_alone(reminders, store, adapter, timers, clock):
    reminders.schedule_reminder("t1", "One", clock() + timedelta(hours=1))
    reminders.schedule_reminder("t2", "Two", clock() + timedelta(hours=2))

    reminders.cancel_reminder("t1")

    assert [r.task_id for r in store.list_all()] == ["t2"]
    assert len(adapter.for_task("t2")) == 1
    assert timers.get_job("fallback:t2") is not None


def test_concurrent_schedules_leave_one_winner(reminders, store, adapter, timers, clock):
    barrier = threading.Barrier(8)

    def schedule(offset):
        barrier.wait()
        reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=offset))

    threads = [threading.Thread(target=schedule, args=(i + 1,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    records = store.list_all()
    assert len(records) == 1
    assert len(adapter.for_task("t1")) == 1
    assert len(timers.get_jobs()) == 1
    assert timers.get_job("fallback:t1").trigger.run_date == records[0].scheduled_for


def test_due_date_reminder_one_hour_before(reminders, adapter, clock):
    handle = reminders.schedule_due_date_reminder("t1", "Report", utc(2025, 6, 5, 17, 0))

    fire_time, content = adapter.scheduled[handle]
    assert fire_time == utc(2025, 6, 5, 16, 0)
    assert content.title == "Task Due Soon"
    assert content.body == "Report is due in 1 hour"

    reminders.cancel_reminder("t1")
    assert adapter.scheduled == {}


def test_due_date_reminder_skipped_when_too_close(reminders, adapter, clock):
    assert reminders.schedule_due_date_reminder("t1", "Report", clock() + timedelta(minutes=30)) is None
    assert adapter.scheduled == {}


def test_immediate_notification(reminders, adapter, store):
    reminders.send_immediate_notification("Task Completed! 🎉", "Great job! You completed: Report")

    assert adapter.presented[0].title == "Task Completed! 🎉"
    assert store.list_all() == []

    adapter.granted = False
    reminders.send_immediate_notification("Hidden", "Not shown")
    assert len(adapter.presented) == 1


def test_cancel_all_notifications(reminders, store, adapter, timers, clock):
    reminders.schedule_reminder("t1", "One", clock() + timedelta(hours=1))
    reminders.schedule_reminder("t2", "Two", clock() + timedelta(hours=2))

    reminders.cancel_all_notifications()

    assert store.list_all() == []
    assert adapter.scheduled == {}
    assert timers.get_jobs() == []
    assert not reminders.is_armed("t1")


def test_cancel_notification_by_handle(reminders, adapter, clock):
    handle = reminders.schedule_reminder("t1", "One", clock() + timedelta(hours=1))

    reminders.cancel_notification(handle)
    reminders.cancel_notification(None)

    assert adapter.scheduled == {}


def test_os_delivery_consumes_the_reminder(reminders, store, adapter, timers, clock):
    handle = reminders.schedule_reminder("t1", "Water plants", clock() + timedelta(minutes=30))
    schedule_id = live_schedule_id(timers, "t1")

    adapter.deliver(handle)

    assert len(adapter.delivered) == 1
    assert store.get("t1") is None
    assert not reminders.is_armed("t1")
    assert timers.get_job("fallback:t1") is None

    # The fallback timer may already be running when the OS path wins
    reminders._fire_fallback("t1", schedule_id, "Water plants")
    assert adapter.presented == []


def test_fallback_first_suppresses_os_delivery(reminders, store, adapter, timers, clock):
    handle = reminders.schedule_reminder("t1", "Water plants", clock() + timedelta(minutes=30))
    _, content = adapter.scheduled[handle]

    reminders._fire_fallback("t1", live_schedule_id(timers, "t1"), "Water plants")

    assert len(adapter.presented) == 1
    assert adapter.scheduled == {}
    assert reminders._claim_delivery(content.data) is False


def test_os_delivery_of_replaced_reminder_is_suppressed(reminders, store, adapter, clock):
    first = reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    _, stale_content = adapter.scheduled[first]
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=2))

    assert reminders._claim_delivery(stale_content.data) is False
    assert reminders.is_armed("t1")
    assert store.get("t1") is not None


def test_due_soon_delivery_is_always_shown(reminders, adapter, clock):
    handle = reminders.schedule_due_date_reminder("t1", "Report", clock() + timedelta(hours=5))

    adapter.deliver(handle)

    assert [c.title for c in adapter.delivered] == ["Task Due Soon"]


def test_task_locks_are_released(reminders, clock):
    for i in range(5):
        reminders.schedule_reminder(f"t{i}", "Task", clock() + timedelta(hours=1))
    reminders.cancel_reminder("t0")
    reminders.cancel_reminder("never-scheduled")

    assert reminders._locks == {}


def test_task_locks_released_after_fallback(reminders, timers, clock):
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    reminders._fire_fallback("t1", live_schedule_id(timers, "t1"), "Task")

    assert reminders._locks == {}


def test_cancel_continues_past_failing_os_entry(reminders, store, adapter, timers, clock, monkeypatch):
    reminders.schedule_reminder("t1", "Report", clock() + timedelta(hours=2))
    reminders.schedule_due_date_reminder("t1", "Report", clock() + timedelta(hours=5))
    assert sorted(adapter.scheduled) == ["os-1", "os-2"]

    cancel = adapter.cancel

    def flaky_cancel(handle):
        if handle == "os-1":
            raise NotificationError("platform busy")
        cancel(handle)

    monkeypatch.setattr(adapter, "cancel", flaky_cancel)

    reminders.cancel_reminder("t1")

    assert list(adapter.scheduled) == ["os-1"]
    assert store.get("t1") is None
    assert timers.get_job("fallback:t1") is None


def test_missed_fallback_disarms_task(reminders, store, adapter, timers, clock):
    handle = reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    run_time = timers.get_job("fallback:t1").trigger.run_date
    # The scheduler drops a date job once its run is missed
    timers.remove_job("fallback:t1")

    reminders._on_fallback_missed(JobExecutionEvent(EVENT_JOB_MISSED, "fallback:t1", "default", run_time))

    assert not reminders.is_armed("t1")

    # A late OS delivery still gets through and clears the record
    adapter.deliver(handle)
    assert len(adapter.delivered) == 1
    assert store.get("t1") is None


def test_missed_event_for_rearmed_task_is_ignored(reminders, timers, clock):
    reminders.schedule_reminder("t1", "Task", clock() + timedelta(hours=1))
    run_time = clock() + timedelta(minutes=1)

    reminders._on_fallback_missed(JobExecutionEvent(EVENT_JOB_MISSED, "fallback:t1", "default", run_time))
    reminders._on_fallback_missed(JobExecutionEvent(EVENT_JOB_MISSED, "other-job", "default", run_time))

    assert reminders.is_armed("t1")
