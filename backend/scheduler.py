"""
Second Brain Calendar Planner - Week Scheduler
Turns pending tasks and active projects into a conflict-free week plan:
priority scoring, busy-grid construction, fixed appointment placement,
first-fit packing of flexible work and revision hashing.

The whole module is pure. "Now" is passed in, nothing here touches the database.
"""

import hashlib
import json
import math
from dataclasses import dataclass
from datetime import datetime, date, timedelta
from typing import Optional, List, Dict, Any, Tuple, Union

from logger import logger
from models import (
    BusyBlock, CalendarSettings, EntryCategory, ReasonCode,
    SchedulableCandidate, WeekPlan, WeekPlanItem, WeekPlanOptions,
    WeekPlanUnscheduledItem, MIN_DURATION_MINUTES
)
from time_window import (
    add_days, align_up_to_step, at_minute, day_index, ensure_utc,
    format_minutes, is_midnight_utc, minute_of_day, parse_ymd,
    start_of_day_utc, start_of_week_monday_utc, to_ymd
)


MISSED_SLOT_GRACE_MINUTES = 15
REVISION_LENGTH = 16

DEFAULT_TASK_DURATION_MINUTES = 30
DEFAULT_PROJECT_DURATION_MINUTES = 90


# ============================================
# PLANNING WINDOW & DAY GRID
# ============================================

@dataclass
class PlanningWindow:
    """Calendar dates covered by one planning run.

    `now` is only set for now-aware runs (no explicit start date); it drives
    missed-appointment rescheduling and the start-time floor for today.
    """
    start_date: date
    days: int
    now: Optional[datetime] = None

    @property
    def end_date(self) -> date:
        return add_days(self.start_date, self.days - 1)

    def day(self, index: int) -> date:
        return add_days(self.start_date, index)

    @property
    def today_index(self) -> Optional[int]:
        if self.now is None:
            return None
        return day_index(self.now, self.start_date)

    @property
    def floor_day_index(self) -> int:
        """First day index flexible work may land on."""
        if self.now is None:
            return 0
        return max(0, self.today_index)


def resolve_window(options: WeekPlanOptions, now: datetime) -> PlanningWindow:
    if options.start_date:
        return PlanningWindow(parse_ymd(options.start_date), options.days)
    now = ensure_utc(now)
    return PlanningWindow(start_of_week_monday_utc(now), options.days, now)


@dataclass
class BusyInterval:
    day_index: int
    start_minute: int
    end_minute: int

    def overlaps(self, start_minute: int, end_minute: int) -> bool:
        return start_minute < self.end_minute and end_minute > self.start_minute


class DayGrid:
    """Blocked minutes and placed load per day of the window."""

    def __init__(self, days: int):
        self.intervals: List[List[BusyInterval]] = [[] for _ in range(days)]
        self.loads: List[int] = [0] * days

    def add(self, interval: BusyInterval):
        day = self.intervals[interval.day_index]
        day.append(interval)
        day.sort(key=lambda i: (i.start_minute, i.end_minute))

    def is_free(self, index: int, start_minute: int, end_minute: int) -> bool:
        return not any(i.overlaps(start_minute, end_minute) for i in self.intervals[index])

    def reserve(self, index: int, start_minute: int, end_minute: int):
        self.add(BusyInterval(index, start_minute, end_minute))
        self.loads[index] += end_minute - start_minute


# ============================================
# CANDIDATES
# ============================================

def _as_date(value: Union[date, datetime, None]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value


def _split_due(due_date, due_at) -> Tuple[Optional[date], Optional[datetime]]:
    """A due_at stamped at UTC midnight is a date-only deadline."""
    due_date = _as_date(due_date)
    if due_at is None:
        return due_date, None
    due_at = ensure_utc(due_at)
    if is_midnight_utc(due_at):
        return due_date or due_at.date(), None
    return due_date, due_at


def candidate_from_task(row: Dict[str, Any], default_duration: int = DEFAULT_TASK_DURATION_MINUTES) -> SchedulableCandidate:
    """Build a candidate from a pending task row (entries + task details)."""
    due_date, due_at = _split_due(row.get("due_date"), row.get("due_at"))
    fixed_at = ensure_utc(row["fixed_at"]) if row.get("fixed_at") else None
    duration = max(MIN_DURATION_MINUTES, int(row.get("duration_minutes") or default_duration))

    if due_at is not None:
        reason = f"Due at {due_at.strftime('%Y-%m-%d %H:%M')} UTC"
    elif due_date is not None:
        reason = f"Due on {to_ymd(due_date)}"
    else:
        reason = "Pending task"

    return SchedulableCandidate(
        entry_path=f"{EntryCategory.TASK.value}/{row['slug']}",
        category=EntryCategory.TASK,
        title=row["title"],
        source_name=row["title"],
        duration_minutes=duration,
        due_at=due_at,
        due_date=due_date,
        fixed_at=fixed_at,
        task_priority=3 if row.get("priority") is None else row["priority"],
        reason=reason,
    )


def candidate_from_project(row: Dict[str, Any], default_duration: int = DEFAULT_PROJECT_DURATION_MINUTES) -> SchedulableCandidate:
    """Build a momentum block candidate from an active/waiting/blocked project row."""
    due_date = _as_date(row.get("due_date"))
    next_action = (row.get("next_action") or "").strip()

    return SchedulableCandidate(
        entry_path=f"{EntryCategory.PROJECT.value}/{row['slug']}",
        category=EntryCategory.PROJECT,
        title=next_action or f"Progress {row['title']}",
        source_name=row["title"],
        duration_minutes=max(MIN_DURATION_MINUTES, int(row.get("duration_minutes") or default_duration)),
        due_date=due_date,
        reason=f"Project due on {to_ymd(due_date)}" if due_date else "Active project momentum",
    )


def candidate_due_date(candidate: SchedulableCandidate) -> Optional[date]:
    if candidate.due_at is not None:
        return ensure_utc(candidate.due_at).date()
    return candidate.due_date


def candidate_due_instant(candidate: SchedulableCandidate) -> Optional[datetime]:
    if candidate.due_at is not None:
        return ensure_utc(candidate.due_at)
    if candidate.due_date is not None:
        return start_of_day_utc(candidate.due_date)
    return None


def candidate_timed_due(candidate: SchedulableCandidate) -> Optional[datetime]:
    """Due instant carrying a real time of day; date-only deadlines return None."""
    if candidate.due_at is None:
        return None
    due_at = ensure_utc(candidate.due_at)
    return None if is_midnight_utc(due_at) else due_at


# ============================================
# PRIORITY SCORING
# ============================================

def compute_priority(
    due_at: Union[datetime, date, None],
    window_start: date,
    window_end: date,
    category: EntryCategory,
    task_priority: Optional[int] = 3,
    today: Optional[date] = None
) -> int:
    """
    Urgency score for one candidate. Higher schedules first.

    Tasks start at 120 shifted by 25 per priority step away from 3, projects
    at 90. Overdue work gets +80, work due inside the window gets a bonus that
    shrinks by 8 per day (never below 10), anything due later gets +5. Tasks due
    today before noon get a further +8.
    """
    if category == EntryCategory.TASK:
        level = min(5, max(1, task_priority if task_priority is not None else 3))
        score = 120 + (level - 3) * 25
    else:
        score = 90

    if due_at is None:
        return score

    due_day = _as_date(due_at)
    if due_day < window_start:
        return score + 80

    if due_day <= window_end:
        days_until_due = (due_day - window_start).days
        score += max(10, 60 - days_until_due * 8)
        if (
            category == EntryCategory.TASK
            and today is not None
            and due_day == today
            and isinstance(due_at, datetime)
            and ensure_utc(due_at).hour < 12
        ):
            score += 8
        return score

    return score + 5


def rank_candidates(
    candidates: List[SchedulableCandidate],
    window: PlanningWindow,
    today: Optional[date] = None
) -> List[SchedulableCandidate]:
    """Score fresh copies of the candidates and sort them (stable) by score descending."""
    scored = []
    for candidate in candidates:
        priority = compute_priority(
            candidate_due_instant(candidate),
            window.start_date,
            window.end_date,
            candidate.category,
            candidate.task_priority,
            today,
        )
        scored.append(candidate.model_copy(update={"priority": priority}))
    return sorted(scored, key=lambda c: -c.priority)


# ============================================
# BUSY INTERVALS
# ============================================

def build_busy_intervals(
    blocks: List[BusyBlock],
    window: PlanningWindow,
    settings: CalendarSettings,
    buffer_minutes: int
) -> DayGrid:
    """Clip buffered external busy blocks to each working day's working hours."""
    grid = DayGrid(window.days)
    work_start = settings.workday_start_minutes
    work_end = settings.workday_end_minutes
    buffer = timedelta(minutes=buffer_minutes)

    for block in blocks:
        block_start = ensure_utc(block.start_at) - buffer
        block_end = ensure_utc(block.end_at) + buffer

        for index in range(window.days):
            day = window.day(index)
            if not settings.is_working_day(day):
                continue

            day_start = start_of_day_utc(day)
            day_end = day_start + timedelta(days=1)
            if block_end <= day_start or block_start >= day_end:
                continue

            clipped_start = max(block_start, day_start)
            clipped_end = min(block_end, day_end)
            start_minute = int((clipped_start - day_start).total_seconds() // 60)
            end_minute = math.ceil((clipped_end - day_start).total_seconds() / 60)

            start_minute = max(start_minute, work_start)
            end_minute = min(end_minute, work_end)
            if end_minute > start_minute:
                grid.add(BusyInterval(index, start_minute, end_minute))

    return grid


# ============================================
# PLAN ENTRIES
# ============================================

def _placed_item(candidate: SchedulableCandidate, day: date, start_minute: int, reason: str, fixed: bool) -> WeekPlanItem:
    due_date = candidate_due_date(candidate)
    return WeekPlanItem(
        entry_path=candidate.entry_path,
        category=candidate.category,
        title=candidate.title,
        source_name=candidate.source_name,
        due_date=to_ymd(due_date) if due_date else None,
        due_at=candidate_timed_due(candidate),
        start=at_minute(day, start_minute),
        end=at_minute(day, start_minute + candidate.duration_minutes),
        duration_minutes=candidate.duration_minutes,
        reason=reason,
        fixed=fixed,
    )


def _unscheduled_item(candidate: SchedulableCandidate, reason_code: ReasonCode, message: str) -> WeekPlanUnscheduledItem:
    due_date = candidate_due_date(candidate)
    return WeekPlanUnscheduledItem(
        entry_path=candidate.entry_path,
        category=candidate.category,
        title=candidate.title,
        source_name=candidate.source_name,
        duration_minutes=candidate.duration_minutes,
        due_date=to_ymd(due_date) if due_date else None,
        fixed_at=candidate.fixed_at,
        reason_code=reason_code,
        message=message,
    )


# ============================================
# FIXED APPOINTMENTS
# ============================================

def place_fixed_candidates(
    candidates: List[SchedulableCandidate],
    window: PlanningWindow,
    settings: CalendarSettings,
    grid: DayGrid,
    grace_minutes: int = MISSED_SLOT_GRACE_MINUTES
) -> Tuple[List[WeekPlanItem], List[WeekPlanUnscheduledItem], List[SchedulableCandidate]]:
    """
    Pin candidates with a fixed start time onto the grid, in the given order.

    Missed appointments (now-aware runs only) are not rejected: their fixed
    time is cleared in place and they are returned as demoted so the flexible
    packer can find them a new slot.

    Returns:
        (placed items, unscheduled items, demoted candidates)
    """
    placed: List[WeekPlanItem] = []
    unscheduled: List[WeekPlanUnscheduledItem] = []
    demoted: List[SchedulableCandidate] = []
    work_start = settings.workday_start_minutes
    work_end = settings.workday_end_minutes

    for candidate in candidates:
        fixed_at = ensure_utc(candidate.fixed_at)
        index = day_index(fixed_at, window.start_date)
        label = f"{to_ymd(fixed_at)} {format_minutes(minute_of_day(fixed_at))}"

        if index < 0 or index >= window.days:
            unscheduled.append(_unscheduled_item(
                candidate, ReasonCode.OUTSIDE_WINDOW,
                f"Fixed time {label} is outside the planning window "
                f"{to_ymd(window.start_date)} to {to_ymd(window.end_date)}"
            ))
            continue

        day = window.day(index)
        if not settings.is_working_day(day):
            unscheduled.append(_unscheduled_item(
                candidate, ReasonCode.OUTSIDE_WORKING_HOURS,
                f"Fixed time {label} falls on a non-working day"
            ))
            continue

        start_minute = minute_of_day(fixed_at)
        end_minute = start_minute + candidate.duration_minutes

        if window.now is not None:
            slot_end = at_minute(day, end_minute)
            if slot_end + timedelta(minutes=grace_minutes) <= window.now:
                candidate.fixed_at = None
                candidate.reason = f"Rescheduled: missed fixed time {format_minutes(start_minute)} on {to_ymd(day)}"
                demoted.append(candidate)
                logger.debug(f"Demoted missed appointment {candidate.entry_path} ({label})")
                continue

        if start_minute < work_start or end_minute > work_end:
            unscheduled.append(_unscheduled_item(
                candidate, ReasonCode.OUTSIDE_WORKING_HOURS,
                f"Fixed time {format_minutes(start_minute)}-{format_minutes(end_minute)} on {to_ymd(day)} "
                f"is outside working hours {settings.workday_start_time}-{settings.workday_end_time}"
            ))
            continue

        if not grid.is_free(index, start_minute, end_minute):
            unscheduled.append(_unscheduled_item(
                candidate, ReasonCode.FIXED_CONFLICT,
                f"Fixed time {format_minutes(start_minute)}-{format_minutes(end_minute)} on {to_ymd(day)} "
                f"conflicts with another commitment"
            ))
            continue

        grid.reserve(index, start_minute, end_minute)
        placed.append(_placed_item(candidate, day, start_minute, f"Fixed at {format_minutes(start_minute)} UTC", fixed=True))

    return placed, unscheduled, demoted


# ============================================
# FLEXIBLE PACKING
# ============================================

def candidate_day_order(
    candidate: SchedulableCandidate,
    window: PlanningWindow,
    settings: CalendarSettings,
    grid: DayGrid
) -> List[int]:
    """
    Day indexes to try, in order.

    Work due inside the window (or already overdue) is tried as early as
    possible up to its due day. Everything else goes to the least-loaded day.
    """
    floor = window.floor_day_index
    remaining = [i for i in range(floor, window.days) if settings.is_working_day(window.day(i))]

    due = candidate_due_date(candidate)
    if due is not None and due <= window.end_date:
        due_index = day_index(due, window.start_date)
        if due_index >= floor:
            bounded = [i for i in remaining if i <= due_index]
            if bounded:
                return bounded
        return remaining

    return sorted(remaining, key=lambda i: (grid.loads[i], i))


def latest_end_minute(candidate: SchedulableCandidate, day: date, work_end: int) -> int:
    timed_due = candidate_timed_due(candidate)
    if timed_due is not None and timed_due.date() == day:
        return min(work_end, minute_of_day(timed_due))
    return work_end


def minimum_start_minute(
    window: PlanningWindow,
    index: int,
    work_start: int,
    work_end: int,
    granularity_minutes: int,
    grace_minutes: int = MISSED_SLOT_GRACE_MINUTES
) -> int:
    if window.now is None or index != window.today_index:
        return work_start
    floor = align_up_to_step(minute_of_day(window.now) + grace_minutes, granularity_minutes)
    return min(max(work_start, floor), work_end)


def find_first_fit(
    grid: DayGrid,
    index: int,
    duration_minutes: int,
    start_minute: int,
    end_limit: int,
    granularity_minutes: int
) -> Optional[int]:
    """First start minute (stepping by `granularity_minutes`) whose slot is free."""
    cursor = start_minute
    while cursor + duration_minutes <= end_limit:
        if grid.is_free(index, cursor, cursor + duration_minutes):
            return cursor
        cursor += granularity_minutes
    return None


def place_flexible_candidates(
    candidates: List[SchedulableCandidate],
    window: PlanningWindow,
    settings: CalendarSettings,
    grid: DayGrid,
    granularity_minutes: int,
    grace_minutes: int = MISSED_SLOT_GRACE_MINUTES
) -> Tuple[List[WeekPlanItem], List[WeekPlanUnscheduledItem]]:
    placed: List[WeekPlanItem] = []
    unscheduled: List[WeekPlanUnscheduledItem] = []
    work_start = settings.workday_start_minutes
    work_end = settings.workday_end_minutes

    for candidate in candidates:
        order = candidate_day_order(candidate, window, settings, grid)
        if not order:
            unscheduled.append(_unscheduled_item(
                candidate, ReasonCode.OUTSIDE_WORKING_HOURS,
                "No working day left in the planning window"
            ))
            continue

        for index in order:
            day = window.day(index)
            start_limit = minimum_start_minute(window, index, work_start, work_end, granularity_minutes, grace_minutes)
            end_limit = latest_end_minute(candidate, day, work_end)
            start_minute = find_first_fit(grid, index, candidate.duration_minutes, start_limit, end_limit, granularity_minutes)
            if start_minute is None:
                continue

            grid.reserve(index, start_minute, start_minute + candidate.duration_minutes)
            placed.append(_placed_item(candidate, day, start_minute, candidate.reason, fixed=False))
            break
        else:
            unscheduled.append(_unscheduled_item(
                candidate, ReasonCode.NO_FREE_SLOT,
                f"No free {candidate.duration_minutes}-minute slot between "
                f"{to_ymd(window.day(order[0]))} and {to_ymd(window.day(order[-1]))}"
            ))

    return placed, unscheduled


# ============================================
# PLAN ASSEMBLY
# ============================================

def compute_revision(body: Dict[str, Any]) -> str:
    """Short, stable hash of a JSON-compatible plan body."""
    payload = json.dumps(body, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:REVISION_LENGTH]


def assemble_plan(
    window: PlanningWindow,
    granularity_minutes: int,
    buffer_minutes: int,
    placed: List[WeekPlanItem],
    unscheduled: List[WeekPlanUnscheduledItem],
    generated_at: datetime
) -> WeekPlan:
    items = sorted(placed, key=lambda i: (i.start, i.end, i.entry_path))
    body = {
        "start_date": to_ymd(window.start_date),
        "end_date": to_ymd(window.end_date),
        "granularity_minutes": granularity_minutes,
        "buffer_minutes": buffer_minutes,
        "items": [item.model_dump(mode="json") for item in items],
        "unscheduled": [entry.model_dump(mode="json") for entry in unscheduled],
    }

    return WeekPlan(
        start_date=body["start_date"],
        end_date=body["end_date"],
        granularity_minutes=granularity_minutes,
        buffer_minutes=buffer_minutes,
        items=items,
        unscheduled=unscheduled,
        total_minutes=sum(item.duration_minutes for item in items),
        warnings=[f"{entry.title}: {entry.message}" for entry in unscheduled],
        generated_at=ensure_utc(generated_at),
        revision=compute_revision(body),
    )


def build_week_plan(
    candidates: List[SchedulableCandidate],
    busy_blocks: List[BusyBlock],
    settings: CalendarSettings,
    options: WeekPlanOptions,
    now: datetime,
    grace_minutes: int = MISSED_SLOT_GRACE_MINUTES
) -> WeekPlan:
    """
    Build a week plan from already-fetched inputs.

    Args:
        candidates: tasks and projects competing for time
        busy_blocks: external calendar blocks (enabled sources only)
        settings: the user's working hours
        options: validated window/granularity/buffer options
        now: reference instant; only consulted for scheduling when
             options.start_date is omitted, always used as generated_at
        grace_minutes: grace for missed appointments and today's start floor

    Returns:
        WeekPlan with every candidate either in items or unscheduled
    """
    now = ensure_utc(now)
    window = resolve_window(options, now)
    today = window.now.date() if window.now is not None else window.start_date

    ranked = rank_candidates(candidates, window, today)
    grid = build_busy_intervals(busy_blocks, window, settings, options.buffer_minutes)

    fixed = [c for c in ranked if c.fixed_at is not None]
    fixed_items, fixed_rejects, demoted = place_fixed_candidates(fixed, window, settings, grid, grace_minutes)

    # Demoted appointments had fixed_at cleared, so they rejoin in rank order
    flexible = [c for c in ranked if c.fixed_at is None]
    flexible_items, flexible_rejects = place_flexible_candidates(
        flexible, window, settings, grid, options.granularity_minutes, grace_minutes
    )

    plan = assemble_plan(
        window,
        options.granularity_minutes,
        options.buffer_minutes,
        fixed_items + flexible_items,
        fixed_rejects + flexible_rejects,
        now,
    )
    logger.debug(
        f"Plan {plan.start_date}..{plan.end_date}: {len(plan.items)} placed, "
        f"{len(plan.unscheduled)} unscheduled, {len(demoted)} rescheduled, revision {plan.revision}"
    )
    return plan
