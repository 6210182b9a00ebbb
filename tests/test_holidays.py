"""
Test suite for holiday adjustment

Tests holiday and weekend rescheduling policies, meeting calendars and the
guarantee that adjustment never adds or drops periods.
"""

import logging
import pytest
from datetime import date, timedelta

from lending_core.calendar_utils import PeriodFrequencyType, RescheduleType, WorkingDays
from lending_core.exceptions import InvalidHolidayError
from lending_core.holidays import Holiday, HolidayAdjuster, MeetingCalendar, MeetingFrequency
from lending_core.scheduled_dates import generate_due_dates


def monthly_from_jan_15(count=6):
    return generate_due_dates(date(2023, 1, 15), count, 1, PeriodFrequencyType.MONTHS)


class TestHoliday:
    """Test holiday validation"""

    def test_end_before_start_rejected(self):
        with pytest.raises(InvalidHolidayError) as exc_info:
            Holiday(date(2023, 3, 15), date(2023, 3, 14))
        assert exc_info.value.code == "holiday.to.date.before.from.date"

    def test_reschedule_date_inside_holiday_rejected(self):
        with pytest.raises(InvalidHolidayError):
            Holiday(date(2023, 3, 15), date(2023, 3, 17), reschedule_to=date(2023, 3, 16))

    def test_contains_is_inclusive(self):
        holiday = Holiday(date(2023, 3, 15), date(2023, 3, 16))
        assert holiday.contains(date(2023, 3, 15))
        assert holiday.contains(date(2023, 3, 16))
        assert not holiday.contains(date(2023, 3, 17))


class TestHolidayAdjuster:
    """Test due-date adjustment policies"""

    def test_move_to_next_working_day_shifts_only_holiday_date(self):
        """Test a March 15 holiday moves only the March due date"""
        holiday = Holiday(date(2023, 3, 15), date(2023, 3, 15), RescheduleType.MOVE_TO_NEXT_WORKING_DAY)
        adjuster = HolidayAdjuster([holiday], WorkingDays.every_day())

        raw = monthly_from_jan_15()
        adjusted = adjuster.adjust(raw)

        assert adjusted[1] == date(2023, 3, 16)
        assert [d for i, d in enumerate(adjusted) if i != 1] == [d for i, d in enumerate(raw) if i != 1]

    def test_move_to_previous_working_day(self):
        holiday = Holiday(date(2023, 3, 15), date(2023, 3, 15), RescheduleType.MOVE_TO_PREVIOUS_WORKING_DAY)
        adjuster = HolidayAdjuster([holiday], WorkingDays())

        adjusted = adjuster.adjust(monthly_from_jan_15(3))

        assert adjusted[1] == date(2023, 3, 14)

    def test_weekend_uses_default_policy(self):
        """Test Saturday April 15 moves to Monday April 17"""
        adjuster = HolidayAdjuster([], WorkingDays())

        adjusted = adjuster.adjust(monthly_from_jan_15(3))

        assert adjusted == [date(2023, 2, 15), date(2023, 3, 15), date(2023, 4, 17)]

    def test_multi_day_holiday_walks_past_it(self):
        holiday = Holiday(date(2023, 3, 14), date(2023, 3, 16))
        adjuster = HolidayAdjuster([holiday], WorkingDays())

        assert adjuster.adjust([date(2023, 3, 15)]) == [date(2023, 3, 17)]

    def test_next_working_day_skips_weekend_after_holiday(self):
        """Test Friday holiday lands on the following Monday"""
        holiday = Holiday(date(2023, 3, 17), date(2023, 3, 17))
        adjuster = HolidayAdjuster([holiday], WorkingDays())

        assert adjuster.adjust([date(2023, 3, 17)]) == [date(2023, 3, 20)]

    def test_reschedule_future_installments(self):
        """Test lost days shift this and every later due date"""
        holiday = Holiday(date(2023, 3, 15), date(2023, 3, 16), RescheduleType.RESCHEDULE_FUTURE_INSTALLMENTS)
        adjuster = HolidayAdjuster([holiday], WorkingDays.every_day())

        adjusted = adjuster.adjust(monthly_from_jan_15(4))

        assert adjusted == [date(2023, 2, 15), date(2023, 3, 17), date(2023, 4, 17), date(2023, 5, 17)]

    def test_explicit_reschedule_date(self):
        holiday = Holiday(date(2023, 3, 15), date(2023, 3, 15), reschedule_to=date(2023, 3, 20))
        adjuster = HolidayAdjuster([holiday], WorkingDays())

        assert adjuster.adjust(monthly_from_jan_15(2)) == [date(2023, 2, 15), date(2023, 3, 20)]

    def test_holiday_override_beats_default_policy(self):
        holiday = Holiday(date(2023, 3, 15), date(2023, 3, 15), RescheduleType.MOVE_TO_PREVIOUS_WORKING_DAY)
        working_days = WorkingDays(reschedule_type=RescheduleType.MOVE_TO_NEXT_WORKING_DAY)
        adjuster = HolidayAdjuster([holiday], working_days)

        assert adjuster.adjust([date(2023, 3, 15)]) == [date(2023, 3, 14)]

    def test_dates_resolved_independently(self):
        """Test a collision produced by opposing policies is kept, not merged"""
        holidays = [
            Holiday(date(2023, 3, 14), date(2023, 3, 14), RescheduleType.MOVE_TO_NEXT_WORKING_DAY),
            Holiday(date(2023, 3, 16), date(2023, 3, 16), RescheduleType.MOVE_TO_PREVIOUS_WORKING_DAY),
        ]
        adjuster = HolidayAdjuster(holidays, WorkingDays.every_day())

        adjusted = adjuster.adjust([date(2023, 3, 14), date(2023, 3, 16)])

        assert adjusted == [date(2023, 3, 15), date(2023, 3, 15)]

    def test_collision_is_logged(self, caplog):
        holiday = Holiday(date(2023, 3, 15), date(2023, 3, 15), RescheduleType.MOVE_TO_PREVIOUS_WORKING_DAY)
        adjuster = HolidayAdjuster([holiday], WorkingDays.every_day())

        with caplog.at_level(logging.WARNING, logger="lending.holidays"):
            adjusted = adjuster.adjust([date(2023, 3, 14), date(2023, 3, 15)])

        assert adjusted == [date(2023, 3, 14), date(2023, 3, 14)]
        assert any("shared by more than one period" in r.getMessage() for r in caplog.records)

    def test_move_next_never_earlier_and_keeps_length(self):
        holidays = [
            Holiday(date(2023, 2, 15), date(2023, 2, 20)),
            Holiday(date(2023, 6, 1), date(2023, 6, 30)),
        ]
        adjuster = HolidayAdjuster(holidays, WorkingDays())
        raw = generate_due_dates(date(2023, 1, 1), 60, 1, PeriodFrequencyType.WEEKS)

        adjusted = adjuster.adjust(raw)

        assert len(adjusted) == len(raw)
        assert all(new >= old for old, new in zip(raw, adjusted))
        assert all(adjuster.is_valid_due_date(d) for d in adjusted)

    def test_empty_sequence(self):
        assert HolidayAdjuster([], WorkingDays()).adjust([]) == []


class TestMeetingCalendar:
    """Test meeting calendar snapping"""

    def test_monthly_meeting_day(self):
        """Test due dates snap forward to the 20th"""
        calendar = MeetingCalendar(MeetingFrequency.MONTHLY, day_of_month=20)
        adjuster = HolidayAdjuster([], WorkingDays(), calendar)

        adjusted = adjuster.adjust(monthly_from_jan_15(3))

        assert adjusted == [date(2023, 2, 20), date(2023, 3, 20), date(2023, 4, 20)]

    def test_calendar_takes_precedence_over_holidays(self):
        calendar = MeetingCalendar(MeetingFrequency.MONTHLY, day_of_month=20)
        holiday = Holiday(date(2023, 3, 20), date(2023, 3, 20))
        adjuster = HolidayAdjuster([holiday], WorkingDays(), calendar)

        assert adjuster.adjust([date(2023, 3, 15)]) == [date(2023, 3, 20)]

    def test_monthly_meeting_rolls_to_next_month(self):
        calendar = MeetingCalendar(MeetingFrequency.MONTHLY, day_of_month=10)
        assert calendar.next_meeting_on_or_after(date(2023, 3, 15)) == date(2023, 4, 10)
        assert calendar.next_meeting_on_or_after(date(2023, 3, 10)) == date(2023, 3, 10)

    def test_monthly_meeting_clamped_in_short_month(self):
        calendar = MeetingCalendar(MeetingFrequency.MONTHLY, day_of_month=31)
        assert calendar.next_meeting_on_or_after(date(2023, 2, 15)) == date(2023, 2, 28)

    def test_weekly_meeting(self):
        calendar = MeetingCalendar(MeetingFrequency.WEEKLY, weekday=5)
        assert calendar.next_meeting_on_or_after(date(2023, 3, 15)) == date(2023, 3, 17)
        assert calendar.next_meeting_on_or_after(date(2023, 3, 17)) == date(2023, 3, 17)

    def test_invalid_calendar(self):
        with pytest.raises(InvalidHolidayError):
            MeetingCalendar(MeetingFrequency.MONTHLY)
        with pytest.raises(InvalidHolidayError):
            MeetingCalendar(MeetingFrequency.WEEKLY, weekday=8)

    def test_snapped_dates_follow_originals(self):
        calendar = MeetingCalendar(MeetingFrequency.WEEKLY, weekday=2)
        adjuster = HolidayAdjuster([], WorkingDays(), calendar)
        raw = generate_due_dates(date(2023, 1, 1), 10, 2, PeriodFrequencyType.WEEKS)

        adjusted = adjuster.adjust(raw)

        assert all(timedelta(0) <= new - old < timedelta(days=7) for old, new in zip(raw, adjusted))
