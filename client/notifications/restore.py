"""
Restoration of pending reminders at process start.

Expired records are dropped for good (a missed reminder is not delivered
late); every record still in the future is armed again through the
scheduler, which re-creates both the OS schedule and the fallback timer.
"""
import logging
from typing import List

from client.storage import StorageError
from .scheduler import ReminderScheduler
from .store import ReminderStore

logger = logging.getLogger(__name__)


def restore_pending_reminders(scheduler: ReminderScheduler, store: ReminderStore) -> List[str]:
    """Re-arm stored reminders. Returns the ids of the tasks that were re-armed."""
    try:
        records = store.list_all()
    except StorageError as e:
        logger.warning(f"No reminders restored, store unavailable: {e}")
        return []

    now = scheduler.now()
    future = [r for r in records if r.scheduled_for > now]
    expired = len(records) - len(future)

    try:
        store.replace_all(future)
    except StorageError as e:
        logger.warning(f"Could not prune expired reminders: {e}")

    restored = []
    for record in future:
        try:
            handle = scheduler.schedule_reminder(
                record.task_id,
                record.task_title,
                record.scheduled_for,
                record.due_date,
            )
        except Exception:
            logger.exception(f"Failed to restore reminder for task {record.task_id}")
            continue
        if handle:
            restored.append(record.task_id)

    logger.info(f"Restored {len(restored)} reminder(s), dropped {expired} expired")
    return restored
