"""
Pytest configuration and fixtures for the calendar planner tests.
"""

import sys
from pathlib import Path

import pytest


# Backend modules are imported by bare name, as the server does
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from models import CalendarSettings, SchedulableCandidate, WeekPlanOptions  # noqa: E402


# Monday
WINDOW_START = "2026-02-09"


@pytest.fixture
def settings():
    """Default working hours: 09:00-17:00, Monday to Friday."""
    return CalendarSettings()


@pytest.fixture
def options():
    """Pinned one-week window, 15 minute steps, no buffer."""
    return WeekPlanOptions(start_date=WINDOW_START, days=7, granularity_minutes=15, buffer_minutes=0)


@pytest.fixture
def make_candidate():
    """Factory for task candidates with optional overrides."""
    counter = {"n": 0}

    def _make(**overrides) -> SchedulableCandidate:
        counter["n"] += 1
        slug = overrides.pop("slug", f"task-{counter['n']}")
        data = {
            "entry_path": f"task/{slug}",
            "category": "task",
            "title": slug.replace("-", " ").title(),
            "source_name": slug.replace("-", " ").title(),
            "duration_minutes": 30,
            "reason": "Pending task",
        }
        data.update(overrides)
        return SchedulableCandidate(**data)

    return _make
