"""
Persistent store of pending reminders.

The whole collection is kept as one list under a single storage key and
written back in full on every mutation.
"""
import logging
import threading
from typing import Iterable, List, Optional
from pydantic import ValidationError

from client.storage import JsonFileStorage, StorageError
from .models import ReminderRecord

logger = logging.getLogger(__name__)

PENDING_NOTIFICATIONS_KEY = "pendingNotifications"


class ReminderStore:
    def __init__(self, storage: JsonFileStorage, key: str = PENDING_NOTIFICATIONS_KEY) -> None:
        self.storage = storage
        self.key = key
        self._lock = threading.RLock()

    def _load(self) -> List[ReminderRecord]:
        raw = self.storage.get_item(self.key, [])
        if not isinstance(raw, list):
            raise StorageError(f"Unexpected value under '{self.key}'")

        records = []
        for item in raw:
            try:
                records.append(ReminderRecord.model_validate(item))
            except ValidationError as e:
                # A malformed entry is dropped without touching the others
                logger.warning(f"Skipping malformed reminder record: {e}")
        return records

    def _save(self, records: Iterable[ReminderRecord]) -> None:
        self.storage.set_item(self.key, [r.model_dump(mode="json") for r in records])

    def put(self, record: ReminderRecord) -> None:
        with self._lock:
            records = [r for r in self._load() if r.task_id != record.task_id]
            records.append(record)
            self._save(records)

    def get(self, task_id: str) -> Optional[ReminderRecord]:
        with self._lock:
            return next((r for r in self._load() if r.task_id == task_id), None)

    def remove(self, task_id: str) -> None:
        with self._lock:
            records = self._load()
            remaining = [r for r in records if r.task_id != task_id]
            if len(remaining) != len(records):
                self._save(remaining)

    def list_all(self) -> List[ReminderRecord]:
        with self._lock:
            return self._load()

    def replace_all(self, records: Iterable[ReminderRecord]) -> None:
        with self._lock:
            self._save(list(records))
