"""
Day Count & Calendar Utilities

Date arithmetic used throughout schedule generation: calendar-correct
period addition, day counting under the ACTUAL and 30E/360 month
conventions, days-in-year resolution and business-day determination.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import FrozenSet, Optional

from .config import get_config
from .exceptions import InvalidHolidayError, InvalidLoanTermsError


class DaysInMonthType(Enum):
    """Month-length convention for counting days"""
    ACTUAL = "actual"      # Calendar days
    DAYS_30 = "days_30"    # 30E/360, every month has 30 days


class DaysInYearType(Enum):
    """Year-length convention used as the interest denominator"""
    ACTUAL = "actual"      # 365, or 366 in leap years
    DAYS_360 = "days_360"
    DAYS_364 = "days_364"
    DAYS_365 = "days_365"


class PeriodFrequencyType(Enum):
    """Unit of a repayment interval"""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class RescheduleType(Enum):
    """What happens to a due date that lands on a holiday or non-working day"""
    MOVE_TO_NEXT_WORKING_DAY = "move_to_next_working_day"
    MOVE_TO_PREVIOUS_WORKING_DAY = "move_to_previous_working_day"
    RESCHEDULE_FUTURE_INSTALLMENTS = "reschedule_future_installments"


_FIXED_YEAR_LENGTHS = {
    DaysInYearType.DAYS_360: 360,
    DaysInYearType.DAYS_364: 364,
    DaysInYearType.DAYS_365: 365,
}


def _thirty_e_ordinal(value: date) -> int:
    return value.year * 360 + value.month * 30 + min(value.day, 30)


def days_between(start: date, end: date,
                 days_in_month_type: DaysInMonthType = DaysInMonthType.ACTUAL) -> int:
    """
    Count days from start (inclusive) to end (exclusive).

    DAYS_30 follows 30E/360: the day of month is capped at 30 on both ends,
    which makes the count additive over adjacent sub-intervals.
    """
    if days_in_month_type == DaysInMonthType.DAYS_30:
        return _thirty_e_ordinal(end) - _thirty_e_ordinal(start)
    return (end - start).days


def days_in_year(days_in_year_type: DaysInYearType, on_date: date) -> int:
    """Year length for the interest denominator on the given date"""
    if days_in_year_type == DaysInYearType.ACTUAL:
        return 366 if calendar.isleap(on_date.year) else 365
    return _FIXED_YEAR_LENGTHS[days_in_year_type]


def add_months(start_date: date, months: int) -> date:
    """Add months to date, clamping to the last day of the target month"""
    month_index = start_date.month - 1 + months
    year = start_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_period(start_date: date, count: int, unit: PeriodFrequencyType) -> date:
    """Move a date by count units of the given frequency"""
    if unit == PeriodFrequencyType.DAYS:
        return start_date + timedelta(days=count)
    elif unit == PeriodFrequencyType.WEEKS:
        return start_date + timedelta(weeks=count)
    elif unit == PeriodFrequencyType.MONTHS:
        return add_months(start_date, count)
    elif unit == PeriodFrequencyType.YEARS:
        return add_months(start_date, count * 12)
    else:
        raise InvalidLoanTermsError(f"Unsupported period frequency: {unit}")


def year_boundaries(start: date, end: date):
    """Split [start, end) into sub-intervals that never cross January 1st"""
    cursor = start
    while cursor < end:
        next_year = date(cursor.year + 1, 1, 1)
        stop = min(next_year, end)
        yield cursor, stop
        cursor = stop


@dataclass(frozen=True)
class WorkingDays:
    """Which ISO weekdays are non-working plus the default reschedule policy"""
    non_working_weekdays: FrozenSet[int] = frozenset({6, 7})
    reschedule_type: RescheduleType = RescheduleType.MOVE_TO_NEXT_WORKING_DAY

    def __post_init__(self):
        weekdays = frozenset(self.non_working_weekdays)
        if any(day < 1 or day > 7 for day in weekdays):
            raise InvalidHolidayError(
                f"Weekday numbers must be between 1 and 7, got {sorted(weekdays)}",
                code="working.days.weekday.invalid",
            )
        if len(weekdays) == 7:
            raise InvalidHolidayError(
                "At least one weekday must be a working day",
                code="working.days.none.working",
            )
        object.__setattr__(self, 'non_working_weekdays', weekdays)

    @classmethod
    def from_config(cls, settings=None) -> 'WorkingDays':
        settings = settings or get_config()
        return cls(
            non_working_weekdays=frozenset(settings.non_working_weekday_numbers),
            reschedule_type=RescheduleType(settings.default_reschedule_type.lower()),
        )

    @classmethod
    def every_day(cls, reschedule_type: Optional[RescheduleType] = None) -> 'WorkingDays':
        """Seven-day working week"""
        return cls(frozenset(), reschedule_type or RescheduleType.MOVE_TO_NEXT_WORKING_DAY)

    def is_working_day(self, value: date) -> bool:
        return value.isoweekday() not in self.non_working_weekdays
