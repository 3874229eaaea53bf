"""Tests for settings, option and calendar source validation."""

from datetime import date

import pytest
from pydantic import ValidationError

from models import (
    CalendarSettings, CalendarSource, CalendarSourceCreate, CalendarSourceUpdate, FetchStatus,
    WeekPlanOptions, first_error_message
)


class TestCalendarSettings:
    def test_defaults(self):
        settings = CalendarSettings()
        assert settings.workday_start_minutes == 540
        assert settings.workday_end_minutes == 1020
        assert settings.working_days == [1, 2, 3, 4, 5]

    @pytest.mark.parametrize("raw,expected", [
        ([5, 1, 3, 1], [1, 3, 5]),
        ([0, 6, 7, -1], [0, 6]),
        (["2", 4], [2, 4]),
        ([True, 3, "x", None], [3]),
        ([], [1, 2, 3, 4, 5]),
        ([9, 10], [1, 2, 3, 4, 5]),
        (None, [1, 2, 3, 4, 5]),
    ])
    def test_working_days_are_normalized(self, raw, expected):
        assert CalendarSettings(working_days=raw).working_days == expected

    def test_end_must_follow_start(self):
        with pytest.raises(ValidationError) as exc_info:
            CalendarSettings(workday_start_time="17:00", workday_end_time="09:00")
        assert first_error_message(exc_info.value) == "workday_end_time must be later than workday_start_time"

    def test_equal_times_rejected(self):
        with pytest.raises(ValidationError):
            CalendarSettings(workday_start_time="09:00", workday_end_time="09:00")

    @pytest.mark.parametrize("value", ["9:00", "25:00", "09:60", "noon", "09:00\n"])
    def test_invalid_time(self, value):
        with pytest.raises(ValidationError) as exc_info:
            CalendarSettings(workday_start_time=value)
        assert first_error_message(exc_info.value) == f"Invalid time '{value}'. Use HH:MM"

    def test_is_working_day(self):
        settings = CalendarSettings(working_days=[0])
        assert settings.is_working_day(date(2026, 2, 15))
        assert not settings.is_working_day(date(2026, 2, 16))


class TestWeekPlanOptions:
    def test_defaults(self):
        options = WeekPlanOptions()
        assert options.start_date is None
        assert (options.days, options.granularity_minutes, options.buffer_minutes) == (7, 15, 10)

    @pytest.mark.parametrize("field,value", [
        ("days", 0), ("days", 15),
        ("granularity_minutes", 4), ("granularity_minutes", 61),
        ("buffer_minutes", -1), ("buffer_minutes", 121),
        ("days", 7.5),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            WeekPlanOptions(**{field: value})

    @pytest.mark.parametrize("field,value", [
        ("days", 1), ("days", 14),
        ("granularity_minutes", 5), ("granularity_minutes", 60),
        ("buffer_minutes", 0), ("buffer_minutes", 120),
    ])
    def test_bounds_are_inclusive(self, field, value):
        assert getattr(WeekPlanOptions(**{field: value}), field) == value

    def test_bad_start_date(self):
        with pytest.raises(ValidationError) as exc_info:
            WeekPlanOptions(start_date="2026-02-30")
        assert first_error_message(exc_info.value) == "Invalid date '2026-02-30'. Use YYYY-MM-DD"

    def test_unknown_option(self):
        with pytest.raises(ValidationError):
            WeekPlanOptions(timezone="Europe/Paris")


class TestCalendarSourceModels:
    def test_create_normalizes(self):
        source = CalendarSourceCreate(name=" Work ", url=" https://example.com/work.ics ", color="#a1b2c3")
        assert (source.name, source.url, source.color) == ("Work", "https://example.com/work.ics", "#A1B2C3")

    def test_empty_color_is_cleared(self):
        assert CalendarSourceCreate(name="Work", url="webcal://example.com/a.ics", color="").color is None

    def test_url_whitespace_is_stripped(self):
        assert CalendarSourceCreate(name="Work", url="https://example.com/a.ics\n").url == "https://example.com/a.ics"

    @pytest.mark.parametrize("data,message", [
        ({"url": "https://example.com/a.ics"}, "name is required"),
        ({"name": "Work"}, "url must be an http(s) or webcal URL"),
        ({"name": "Work", "url": "mailto:me@example.com"}, "url must be an http(s) or webcal URL"),
        ({"name": "Work", "url": "https://example.com/a.ics", "color": "#FFF"}, "Invalid color '#FFF'. Use #RRGGBB"),
    ])
    def test_create_rejects(self, data, message):
        with pytest.raises(ValidationError) as exc_info:
            CalendarSourceCreate(**data)
        assert first_error_message(exc_info.value) == message

    def test_color_with_trailing_newline_is_rejected(self):
        with pytest.raises(ValidationError):
            CalendarSourceCreate(name="Work", url="https://example.com/a.ics", color="#FFFFFF\n")

    def test_update_allows_partial_changes(self):
        update = CalendarSourceUpdate(enabled=False)
        assert (update.name, update.enabled, update.color) == (None, False, None)

    @pytest.mark.parametrize("data,message", [
        ({"enabled": "false"}, "enabled must be a boolean"),
        ({"enabled": 0}, "enabled must be a boolean"),
        ({"name": "   "}, "name is required"),
    ])
    def test_update_rejects(self, data, message):
        with pytest.raises(ValidationError) as exc_info:
            CalendarSourceUpdate(**data)
        assert first_error_message(exc_info.value) == message

    def test_source_from_row(self):
        row = {
            "id": "src-1", "name": "Work", "url": "https://example.com/a.ics", "enabled": True,
            "color": None, "last_sync_at": None, "fetch_status": "error", "fetch_error": "HTTP 404",
            "created_at": "2026-02-01T09:00:00Z", "updated_at": "2026-02-01T09:00:00Z",
        }
        source = CalendarSource(**row)
        assert source.fetch_status == FetchStatus.ERROR
        assert source.fetch_error == "HTTP 404"
