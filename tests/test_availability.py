"""Tests for availability rules and slot expansion."""

from datetime import date

import pytest

from expertmeet.booking.availability import day_of_week, format_slot, parse_date, slot_times
from expertmeet.errors import InvalidRequest
from expertmeet.schemas import AvailabilityRuleCreate

MONDAY = "2026-10-19"


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


class TestSlotTimes:
    """Tests for slot_times()."""

    def test_one_hour_window(self):
        """A 09:00-10:00 window yields two half-hour starts."""
        assert slot_times("09:00", "10:00") == ["09:00", "09:30"]

    def test_partial_slot_is_dropped(self):
        """A trailing remainder shorter than a slot is not offered."""
        assert slot_times("09:00", "10:15") == ["09:00", "09:30"]

    @pytest.mark.parametrize(
        "start,end",
        [("08:00", "12:00"), ("09:30", "17:00"), ("13:00", "13:30"), ("09:45", "11:00"), ("00:00", "23:59")],
    )
    def test_slot_count_and_spacing(self, start, end):
        """Starts lie on the 30 minute grid from the rule start, all before the end."""
        times = slot_times(start, end)
        span = _minutes(end) - _minutes(start)
        assert len(times) == span // 30
        for value in times:
            offset = _minutes(value) - _minutes(start)
            assert offset % 30 == 0
            assert _minutes(start) <= _minutes(value) < _minutes(end)

    def test_empty_when_start_equals_end(self):
        assert slot_times("09:00", "09:00") == []


class TestDayOfWeek:
    """Tests for the Sunday-first weekday mapping."""

    def test_sunday_is_zero(self):
        assert day_of_week(date(2026, 10, 18)) == 0

    def test_monday_is_one(self):
        assert day_of_week(date(2026, 10, 19)) == 1

    def test_saturday_is_six(self):
        assert day_of_week(date(2026, 10, 24)) == 6


class TestParseDate:
    def test_iso(self):
        assert parse_date("2026-10-19") == date(2026, 10, 19)

    def test_natural(self):
        assert parse_date("October 19, 2026") == date(2026, 10, 19)

    def test_garbage(self):
        with pytest.raises(InvalidRequest):
            parse_date("nonsense")


class TestAvailabilityService:
    """Tests for AvailabilityService."""

    def test_monday_window(self, availability):
        """A Monday 09:00-10:00 rule is offered on a Monday."""
        availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=1, start_time="09:00", end_time="10:00")
        )
        assert availability.available_times("provider-1", MONDAY) == ["09:00", "09:30"]

    def test_no_rules_for_day(self, availability):
        """A day without rules has no times."""
        availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=2, start_time="09:00", end_time="10:00")
        )
        assert availability.available_times("provider-1", MONDAY) == []

    def test_other_provider_rules_ignored(self, availability):
        availability.create_rule(
            "provider-2", AvailabilityRuleCreate(day_of_week=1, start_time="09:00", end_time="10:00")
        )
        assert availability.available_times("provider-1", MONDAY) == []

    def test_overlapping_rules_keep_duplicates(self, availability):
        """Overlapping rules are concatenated in rule order without dedup."""
        availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=1, start_time="09:00", end_time="10:00")
        )
        availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=1, start_time="09:30", end_time="10:30")
        )
        assert availability.available_times("provider-1", MONDAY) == ["09:00", "09:30", "09:30", "10:00"]

    def test_rejects_rule_ending_before_start(self, availability, repos):
        """A rule whose end is not after its start is not stored."""
        result = availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=1, start_time="10:00", end_time="09:00")
        )
        assert result is None
        assert availability.list_rules("provider-1") == []

    def test_rejects_zero_length_rule(self, availability):
        result = availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=1, start_time="10:00", end_time="10:00")
        )
        assert result is None

    def test_delete_rule(self, availability):
        rule = availability.create_rule(
            "provider-1", AvailabilityRuleCreate(day_of_week=1, start_time="09:00", end_time="10:00")
        )
        assert availability.delete_rule(rule.id) is True
        assert availability.delete_rule(rule.id) is False
        assert availability.available_times("provider-1", MONDAY) == []

    def test_seconds_are_normalized(self):
        rule = AvailabilityRuleCreate(day_of_week=1, start_time="09:00:00", end_time="17:00:00")
        assert (rule.start_time, rule.end_time) == ("09:00", "17:00")

    def test_invalid_day_rejected(self):
        with pytest.raises(ValueError):
            AvailabilityRuleCreate(day_of_week=7, start_time="09:00", end_time="10:00")


def test_format_slot():
    assert format_slot(date(2026, 10, 19), "14:30") == "Mon Oct 19 at 2:30 PM"
