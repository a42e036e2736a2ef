"""
Client bootstrap: wires storage, reminders and the API client, and restores
pending reminders once before the client is handed out.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

import pytz

from client.api import TaskApiClient
from client.config import ClientConfig, config as default_config
from client.storage import JsonFileStorage
from client.notifications import (
    DesktopNotificationAdapter,
    NotificationPolicy,
    ReminderScheduler,
    ReminderStore,
    restore_pending_reminders,
)

logger = logging.getLogger(__name__)


@dataclass
class TaskClient:
    api: TaskApiClient
    reminders: ReminderScheduler
    adapter: DesktopNotificationAdapter
    store: ReminderStore
    restored: Optional[List[str]] = None

    def shutdown(self) -> None:
        self.reminders.shutdown()
        self.adapter.shutdown()


def build_client(cfg: ClientConfig = default_config, session=None) -> TaskClient:
    tz = pytz.timezone(cfg.TIMEZONE)
    storage = JsonFileStorage(cfg.STORAGE_PATH)
    store = ReminderStore(storage)
    adapter = DesktopNotificationAdapter(
        enabled=cfg.NOTIFICATIONS_ENABLED,
        jobstore_url=cfg.NOTIFICATION_JOBSTORE_URL,
        policy=NotificationPolicy(stale_after=timedelta(seconds=cfg.STALE_NOTIFICATION_SECONDS)),
    )
    reminders = ReminderScheduler(
        store,
        adapter,
        tz=tz,
        misfire_grace_seconds=cfg.FALLBACK_MISFIRE_GRACE_SECONDS,
    )
    api = TaskApiClient(cfg.API_URL, reminders, storage, session=session, timeout=cfg.API_TIMEOUT)
    return TaskClient(api=api, reminders=reminders, adapter=adapter, store=store)


def start_client(cfg: ClientConfig = default_config, session=None) -> TaskClient:
    client = build_client(cfg, session=session)
    client.adapter.start()
    client.reminders.start()

    if not client.reminders.request_permissions():
        logger.warning("Notification permission not granted; reminders will not be scheduled")
    client.restored = restore_pending_reminders(client.reminders, client.store)
    return client
