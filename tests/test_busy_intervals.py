"""Tests for turning external busy blocks into per-day blocked minutes."""

from datetime import date, datetime, timezone

from models import BusyBlock, CalendarSettings
from scheduler import PlanningWindow, build_busy_intervals


WINDOW = PlanningWindow(date(2026, 2, 9), 7)


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _spans(grid, index):
    return [(i.start_minute, i.end_minute) for i in grid.intervals[index]]


def test_block_maps_to_minutes(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 9, 10, 0), end_at=_utc(2026, 2, 9, 11, 0))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert _spans(grid, 0) == [(600, 660)]
    assert all(not grid.intervals[i] for i in range(1, 7))


def test_buffer_pads_both_sides(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 9, 10, 0), end_at=_utc(2026, 2, 9, 11, 0))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 15)
    assert _spans(grid, 0) == [(585, 675)]


def test_blocks_are_clipped_to_working_hours(settings):
    blocks = [
        BusyBlock(start_at=_utc(2026, 2, 9, 7, 0), end_at=_utc(2026, 2, 9, 8, 0)),
        BusyBlock(start_at=_utc(2026, 2, 10, 8, 30), end_at=_utc(2026, 2, 10, 9, 30)),
        BusyBlock(start_at=_utc(2026, 2, 11, 16, 30), end_at=_utc(2026, 2, 11, 19, 0)),
    ]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert _spans(grid, 0) == []
    assert _spans(grid, 1) == [(540, 570)]
    assert _spans(grid, 2) == [(990, 1020)]


def test_buffer_does_not_leak_outside_working_hours(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 9, 9, 0), end_at=_utc(2026, 2, 9, 9, 30))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 30)
    assert _spans(grid, 0) == [(540, 600)]


def test_non_working_days_are_skipped(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 14, 10, 0), end_at=_utc(2026, 2, 14, 12, 0))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert all(not day for day in grid.intervals)


def test_weekend_blocks_count_when_weekend_is_working():
    settings = CalendarSettings(working_days=[0, 6])
    blocks = [BusyBlock(start_at=_utc(2026, 2, 14, 10, 0), end_at=_utc(2026, 2, 14, 12, 0))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert _spans(grid, 5) == [(600, 720)]


def test_all_day_block_fills_working_hours(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 10), end_at=_utc(2026, 2, 11), is_all_day=True)]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert _spans(grid, 1) == [(540, 1020)]
    assert _spans(grid, 0) == []
    assert _spans(grid, 2) == []


def test_multi_day_block_is_split(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 10, 15, 0), end_at=_utc(2026, 2, 11, 10, 0))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert _spans(grid, 1) == [(900, 1020)]
    assert _spans(grid, 2) == [(540, 600)]


def test_partial_minutes_widen_the_interval(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 9, 10, 0, 30), end_at=_utc(2026, 2, 9, 10, 29, 30))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert _spans(grid, 0) == [(600, 630)]


def test_blocks_outside_window_are_ignored(settings):
    blocks = [
        BusyBlock(start_at=_utc(2026, 2, 6, 10, 0), end_at=_utc(2026, 2, 6, 11, 0)),
        BusyBlock(start_at=_utc(2026, 2, 16, 10, 0), end_at=_utc(2026, 2, 16, 11, 0)),
    ]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert all(not day for day in grid.intervals)


def test_intervals_are_sorted(settings):
    blocks = [
        BusyBlock(start_at=_utc(2026, 2, 9, 14, 0), end_at=_utc(2026, 2, 9, 15, 0)),
        BusyBlock(start_at=_utc(2026, 2, 9, 9, 30), end_at=_utc(2026, 2, 9, 10, 0)),
        BusyBlock(start_at=_utc(2026, 2, 9, 11, 0), end_at=_utc(2026, 2, 9, 12, 0)),
    ]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert _spans(grid, 0) == [(570, 600), (660, 720), (840, 900)]


def test_busy_blocks_do_not_count_as_load(settings):
    blocks = [BusyBlock(start_at=_utc(2026, 2, 9, 9, 0), end_at=_utc(2026, 2, 9, 17, 0))]
    grid = build_busy_intervals(blocks, WINDOW, settings, 0)
    assert grid.loads == [0] * 7
