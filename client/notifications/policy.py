from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import NamedTuple, Optional


class NotificationBehavior(NamedTuple):
    show_alert: bool
    play_sound: bool
    set_badge: bool


SHOW = NotificationBehavior(show_alert=True, play_sound=True, set_badge=False)
SUPPRESS = NotificationBehavior(show_alert=False, play_sound=False, set_badge=False)


@dataclass(frozen=True)
class NotificationPolicy:
    """Decides whether a delivered notification is put on screen.

    Immediate notifications are always shown. Scheduled ones are shown
    unless they arrive more than ``stale_after`` past their fire time.
    """

    stale_after: timedelta = timedelta(minutes=15)

    def decide(self, immediate: bool, scheduled_for: Optional[datetime], now: datetime) -> NotificationBehavior:
        if immediate or scheduled_for is None:
            return SHOW
        if now - scheduled_for > self.stale_after:
            return SUPPRESS
        return SHOW
