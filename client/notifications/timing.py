from datetime import date, datetime, time
from typing import Optional, Union


def localize(value: datetime, tz) -> datetime:
    """Attach ``tz`` to a naive datetime, or convert an aware one into it."""
    if value.tzinfo is None:
        return tz.localize(value)
    return value.astimezone(tz)


def as_calendar_date(value: Optional[Union[date, datetime]], tz) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return localize(value, tz).date()
    return value


def compute_fire_time(
    reminder_time: datetime,
    due_date: Optional[Union[date, datetime]],
    tz,
) -> datetime:
    """Effective reminder instant.

    With a due date, the reminder's clock time (hours and minutes) is put on
    the due date's calendar day in ``tz``. Without one, the reminder time is
    used as is.
    """
    reminder = localize(reminder_time, tz)
    day = as_calendar_date(due_date, tz)
    if day is None:
        return reminder
    return tz.localize(datetime.combine(day, time(reminder.hour, reminder.minute)))
