"""
Holiday & Working-Day Adjuster

Rewrites a raw due-date sequence according to holidays, non-working
weekdays and an optional meeting calendar. The output always has the same
length as the input.
"""

import calendar
from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from .calendar_utils import RescheduleType, WorkingDays, add_months
from .exceptions import InvalidHolidayError
from .logging_config import get_logger, log_action


class MeetingFrequency(Enum):
    """Recurrence of a group meeting calendar"""
    WEEKLY = "weekly"      # Fixed ISO weekday
    MONTHLY = "monthly"    # Fixed day of month, clamped to month end


@dataclass(frozen=True)
class Holiday:
    """Closed date interval with an optional reschedule policy"""
    from_date: date
    to_date: date
    reschedule_type: Optional[RescheduleType] = None
    reschedule_to: Optional[date] = None  # Explicit replacement date
    name: str = ""

    def __post_init__(self):
        if self.to_date < self.from_date:
            raise InvalidHolidayError(
                f"Holiday ends {self.to_date} before it starts {self.from_date}",
                code="holiday.to.date.before.from.date",
            )
        if self.reschedule_to is not None and self.from_date <= self.reschedule_to <= self.to_date:
            raise InvalidHolidayError(
                f"Holiday reschedule date {self.reschedule_to} falls inside the holiday",
                code="holiday.reschedule.date.inside.holiday",
            )

    def contains(self, value: date) -> bool:
        return self.from_date <= value <= self.to_date


@dataclass(frozen=True)
class MeetingCalendar:
    """Group-lending meeting calendar that due dates snap to"""
    frequency: MeetingFrequency
    day_of_month: Optional[int] = None
    weekday: Optional[int] = None  # ISO weekday, 1 = Monday

    def __post_init__(self):
        if self.frequency == MeetingFrequency.MONTHLY:
            if self.day_of_month is None or not 1 <= self.day_of_month <= 31:
                raise InvalidHolidayError(
                    "Monthly meeting calendar needs a day of month between 1 and 31",
                    code="calendar.day.of.month.invalid",
                )
        elif self.weekday is None or not 1 <= self.weekday <= 7:
            raise InvalidHolidayError(
                "Weekly meeting calendar needs an ISO weekday between 1 and 7",
                code="calendar.weekday.invalid",
            )

    def next_meeting_on_or_after(self, value: date) -> date:
        if self.frequency == MeetingFrequency.WEEKLY:
            return value + timedelta(days=(self.weekday - value.isoweekday()) % 7)

        meeting = self._meeting_in_month(value.year, value.month)
        if meeting < value:
            following = add_months(date(value.year, value.month, 1), 1)
            meeting = self._meeting_in_month(following.year, following.month)
        return meeting

    def _meeting_in_month(self, year: int, month: int) -> date:
        return date(year, month, min(self.day_of_month, calendar.monthrange(year, month)[1]))


class HolidayAdjuster:
    """
    Applies meeting calendar, holiday and weekend rules to due dates.

    Dates are resolved one at a time in their original order. A meeting
    calendar, when present, takes precedence over holiday and weekend logic.
    """

    def __init__(
        self,
        holidays: Iterable[Holiday] = (),
        working_days: Optional[WorkingDays] = None,
        meeting_calendar: Optional[MeetingCalendar] = None,
    ):
        self.holidays = sorted(holidays, key=lambda h: h.from_date)
        self.working_days = working_days or WorkingDays.from_config()
        self.meeting_calendar = meeting_calendar
        self.logger = get_logger("lending.holidays")

    def holiday_on(self, value: date) -> Optional[Holiday]:
        for holiday in self.holidays:
            if holiday.contains(value):
                return holiday
        return None

    def is_valid_due_date(self, value: date) -> bool:
        return self.working_days.is_working_day(value) and self.holiday_on(value) is None

    def adjust(self, due_dates: List[date]) -> List[date]:
        """Return the adjusted due-date sequence, same length as the input"""
        adjusted = []
        shift = timedelta(0)

        for original in due_dates:
            candidate = original + shift

            if self.meeting_calendar is not None:
                adjusted.append(self.meeting_calendar.next_meeting_on_or_after(candidate))
                continue

            if self.is_valid_due_date(candidate):
                adjusted.append(candidate)
                continue

            holiday = self.holiday_on(candidate)
            policy = self.working_days.reschedule_type
            if holiday is not None and holiday.reschedule_type is not None:
                policy = holiday.reschedule_type

            if holiday is not None and holiday.reschedule_to is not None:
                moved = holiday.reschedule_to
            elif policy == RescheduleType.MOVE_TO_PREVIOUS_WORKING_DAY:
                moved = self._walk(candidate, -1)
            else:
                moved = self._walk(candidate, 1)

            if policy == RescheduleType.RESCHEDULE_FUTURE_INSTALLMENTS:
                shift += moved - candidate

            adjusted.append(moved)

        self._warn_on_collisions(adjusted)
        return adjusted

    def _walk(self, value: date, direction: int) -> date:
        step = timedelta(days=direction)
        value = value + step
        while not self.is_valid_due_date(value):
            value = value + step
        return value

    def _warn_on_collisions(self, adjusted: List[date]) -> None:
        collisions = sorted(day for day, count in Counter(adjusted).items() if count > 1)
        if collisions:
            log_action(
                self.logger, "warning",
                f"{len(collisions)} due date(s) shared by more than one period after adjustment",
                action="adjust_due_dates",
                resource="schedule",
                extra={"dates": [day.isoformat() for day in collisions]},
            )
