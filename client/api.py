"""
HTTP client for the task REST API.

Keeps the bearer token in on-device storage and keeps local reminders in
step with task mutations through the ``ReminderScheduler`` it is given.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

import requests

from client.storage import JsonFileStorage, StorageError
from client.notifications.scheduler import ReminderScheduler
from client.notifications.timing import localize

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
USER_KEY = "user"

COMPLETED_TITLE = "Task Completed! 🎉"


def _serialize(data: Dict[str, Any], tz) -> Dict[str, Any]:
    """JSON-ready copy of ``data``. Naive datetimes are sent with the offset of ``tz``."""
    out = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            value = localize(value, tz).isoformat()
        elif isinstance(value, date):
            value = value.isoformat()
        out[key] = value
    return out


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class TaskApiClient:
    def __init__(
        self,
        base_url: str,
        reminders: ReminderScheduler,
        storage: JsonFileStorage,
        session=None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.reminders = reminders
        self.storage = storage
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

        token, _ = self.get_stored_auth()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        if response.status_code == 401:
            # Token expired or invalid
            self.clear_auth()
        response.raise_for_status()
        return response.json()

    # =========================================================
    # AUTH
    # =========================================================
    def register(self, username: str, password: str, email: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"Registering {username} at {self.base_url}")
        payload = {"username": username, "password": password}
        if email:
            payload["email"] = email
        data = self._request("POST", "/auth/register", json=payload)
        if data.get("success"):
            self.store_auth(data["token"], data["user"])
        return data

    def login(self, username: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/login", json={"username": username, "password": password})
        if data.get("success"):
            self.store_auth(data["token"], data["user"])
        return data

    def logout(self) -> None:
        self.clear_auth()

    def store_auth(self, token: str, user: Dict[str, Any]) -> None:
        self.session.headers["Authorization"] = f"Bearer {token}"
        try:
            self.storage.set_item(TOKEN_KEY, token)
            self.storage.set_item(USER_KEY, user)
        except StorageError as e:
            logger.error(f"Error storing auth data: {e}")

    def get_stored_auth(self) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
        try:
            return self.storage.get_item(TOKEN_KEY), self.storage.get_item(USER_KEY)
        except StorageError as e:
            logger.error(f"Error getting stored auth data: {e}")
            return None, None

    def clear_auth(self) -> None:
        self.session.headers.pop("Authorization", None)
        try:
            self.storage.remove_item(TOKEN_KEY)
            self.storage.remove_item(USER_KEY)
        except StorageError as e:
            logger.error(f"Error clearing auth data: {e}")

    # =========================================================
    # TASKS
    # =========================================================
    def get_tasks(self) -> Dict[str, Any]:
        return self._request("GET", "/tasks")

    def get_task(self, task_id) -> Dict[str, Any]:
        return self._request("GET", f"/tasks/{task_id}")

    def create_task(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", "/tasks", json=_serialize(task_data, self.reminders.tz))
        task = data["task"]
        logger.info(f"Task {task['id']} created")

        if task_data.get("reminder_time"):
            self.reminders.schedule_reminder(
                task["id"],
                task_data["title"],
                _parse_datetime(task_data["reminder_time"]),
                _parse_datetime(task_data.get("due_date")),
            )
        return data

    def update_task(self, task_id, update_data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("PUT", f"/tasks/{task_id}", json=_serialize(update_data, self.reminders.tz))

        if "reminder_time" in update_data or "due_date" in update_data:
            self.reminders.cancel_reminder(task_id)

            task = data["task"]
            reminder_time = update_data.get("reminder_time", task.get("reminder_time"))
            due_date = update_data.get("due_date", task.get("due_date"))
            if reminder_time:
                self.reminders.schedule_reminder(
                    task_id,
                    update_data.get("title") or task["title"],
                    _parse_datetime(reminder_time),
                    _parse_datetime(due_date),
                )
        return data

    def delete_task(self, task_id) -> Dict[str, Any]:
        data = self._request("DELETE", f"/tasks/{task_id}")
        self.reminders.cancel_reminder(task_id)
        return data

    def complete_task(self, task_id, title: Optional[str] = None) -> Dict[str, Any]:
        data = self._request("PUT", f"/tasks/{task_id}", json={"status": "completed"})
        task_title = title or data["task"]["title"]
        self.reminders.send_immediate_notification(
            COMPLETED_TITLE,
            f"Great job! You completed: {task_title}",
            {"task_title": task_title},
        )
        return data
