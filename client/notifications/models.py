from datetime import date, datetime
from typing import Any, Dict, NamedTuple, Optional
from pydantic import BaseModel, Field

# =========================================================
# REMINDER DATA
# =========================================================
class ReminderRecord(BaseModel):
    """One armed reminder. At most one record exists per task."""

    task_id: str
    task_title: str
    due_date: Optional[date] = None
    scheduled_for: datetime
    created_at: datetime
    schedule_id: Optional[str] = None
    notification_id: Optional[str] = None


class NotificationContent(BaseModel):
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)


class ScheduledNotification(NamedTuple):
    handle: str
    data: Dict[str, Any]
