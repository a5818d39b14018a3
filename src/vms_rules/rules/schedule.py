"""Weekly schedule evaluation for rules."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import ConfigurationError
from .models import ScheduleSlot


class ScheduleEvaluator:
    """Decides whether a rule's hour-of-week grid is armed at a timestamp.

    Slots use 0 = Sunday. All timestamps are converted into a single
    configured zone before the (day, hour) cell is looked up.
    """

    def __init__(self, tz: str = "UTC") -> None:
        try:
            self._tz = timezone.utc if tz.upper() == "UTC" else ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown time zone: {tz!r}") from e

    @property
    def tz(self):
        return self._tz

    def slot_for(self, at: datetime) -> tuple[int, int]:
        """Return the (day_of_week, hour) cell for ``at``."""
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        local = at.astimezone(self._tz)
        # datetime.weekday() is Monday=0; slots are Sunday=0
        return (local.weekday() + 1) % 7, local.hour

    def is_armed(self, schedules: Iterable[ScheduleSlot], at: datetime) -> bool:
        slots = list(schedules)
        if not slots:
            return True
        day, hour = self.slot_for(at)
        return any(
            s.enabled and s.day_of_week == day and s.hour == hour for s in slots
        )

    @staticmethod
    def validate(schedules: Iterable[ScheduleSlot], rule_id: str = "") -> None:
        """Raise ConfigurationError if two slots share a (day, hour) cell."""
        seen: set[tuple[int, int]] = set()
        for slot in schedules:
            key = (slot.day_of_week, slot.hour)
            if key in seen:
                raise ConfigurationError(
                    f"Duplicate schedule slot day={slot.day_of_week} "
                    f"hour={slot.hour} in rule {rule_id!r}"
                )
            seen.add(key)
