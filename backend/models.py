"""
Second Brain Calendar Planner - Pydantic Models (v2 syntax)
"""

import re
from datetime import date, datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from time_window import parse_time_of_day_to_minutes, parse_ymd, utc_day_of_week


DEFAULT_WORKDAY_START = "09:00"
DEFAULT_WORKDAY_END = "17:00"
DEFAULT_WORKING_DAYS = (1, 2, 3, 4, 5)  # Mon-Fri, 0 = Sunday

MIN_DAYS, MAX_DAYS = 1, 14
MIN_GRANULARITY_MINUTES, MAX_GRANULARITY_MINUTES = 5, 60
MIN_BUFFER_MINUTES, MAX_BUFFER_MINUTES = 0, 120
MIN_DURATION_MINUTES = 5


# ============================================
# ENUMS
# ============================================

class EntryCategory(str, Enum):
    TASK = "task"
    PROJECT = "project"


class TaskStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    WAITING = "waiting"
    BLOCKED = "blocked"
    SOMEDAY = "someday"
    DONE = "done"


SCHEDULABLE_PROJECT_STATUSES = (ProjectStatus.ACTIVE, ProjectStatus.WAITING, ProjectStatus.BLOCKED)


class ReasonCode(str, Enum):
    OUTSIDE_WINDOW = "outside_window"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"
    FIXED_CONFLICT = "fixed_conflict"
    NO_FREE_SLOT = "no_free_slot"


# ============================================
# SETTINGS MODELS
# ============================================

class CalendarSettings(BaseModel):
    """Per-user working hours. working_days uses 0 = Sunday."""

    workday_start_time: str = DEFAULT_WORKDAY_START
    workday_end_time: str = DEFAULT_WORKDAY_END
    working_days: List[int] = Field(default_factory=lambda: list(DEFAULT_WORKING_DAYS))

    @field_validator("workday_start_time", "workday_end_time")
    @classmethod
    def check_time_of_day(cls, value: str) -> str:
        parse_time_of_day_to_minutes(value)
        return value

    @field_validator("working_days", mode="before")
    @classmethod
    def normalize_working_days(cls, value):
        if not value:
            return list(DEFAULT_WORKING_DAYS)
        days = set()
        for raw in value:
            if isinstance(raw, bool):
                continue
            try:
                day = int(raw)
            except (TypeError, ValueError):
                continue
            if 0 <= day <= 6:
                days.add(day)
        return sorted(days) or list(DEFAULT_WORKING_DAYS)

    @model_validator(mode="after")
    def check_hours_order(self):
        if self.workday_end_minutes <= self.workday_start_minutes:
            raise ValueError("workday_end_time must be later than workday_start_time")
        return self

    @property
    def workday_start_minutes(self) -> int:
        return parse_time_of_day_to_minutes(self.workday_start_time)

    @property
    def workday_end_minutes(self) -> int:
        return parse_time_of_day_to_minutes(self.workday_end_time)

    def is_working_day(self, value: date) -> bool:
        return utc_day_of_week(value) in self.working_days


class CalendarSettingsUpdate(BaseModel):
    workday_start_time: Optional[str] = None
    workday_end_time: Optional[str] = None
    working_days: Optional[List[int]] = None


class WeekPlanOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_date: Optional[str] = None
    days: int = Field(default=7, ge=MIN_DAYS, le=MAX_DAYS)
    granularity_minutes: int = Field(default=15, ge=MIN_GRANULARITY_MINUTES, le=MAX_GRANULARITY_MINUTES)
    buffer_minutes: int = Field(default=10, ge=MIN_BUFFER_MINUTES, le=MAX_BUFFER_MINUTES)

    @field_validator("start_date")
    @classmethod
    def check_start_date(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_ymd(value)
        return value


def first_error_message(exc: ValidationError) -> str:
    """Human-readable message of the first pydantic error, without the 'Value error, ' prefix."""
    errors = exc.errors()
    if not errors:
        return str(exc)
    error = errors[0]
    ctx_error = (error.get("ctx") or {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error['msg']}" if location else error["msg"]


# ============================================
# SCHEDULER INPUT MODELS
# ============================================

class SchedulableCandidate(BaseModel):
    entry_path: str
    category: EntryCategory
    title: str
    source_name: str
    duration_minutes: int = Field(ge=MIN_DURATION_MINUTES)
    due_at: Optional[datetime] = None
    due_date: Optional[date] = None
    fixed_at: Optional[datetime] = None
    task_priority: int = 3
    priority: float = 0
    reason: str = ""


class BusyBlock(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start_at: datetime
    end_at: datetime
    is_all_day: bool = False


# ============================================
# WEEK PLAN MODELS
# ============================================

class WeekPlanItem(BaseModel):
    entry_path: str
    category: EntryCategory
    title: str
    source_name: str
    due_date: Optional[str] = None
    due_at: Optional[datetime] = None
    start: datetime
    end: datetime
    duration_minutes: int
    reason: str
    fixed: bool = False


class WeekPlanUnscheduledItem(BaseModel):
    entry_path: str
    category: EntryCategory
    title: str
    source_name: str
    duration_minutes: int
    due_date: Optional[str] = None
    fixed_at: Optional[datetime] = None
    reason_code: ReasonCode
    message: str


class WeekPlan(BaseModel):
    start_date: str
    end_date: str
    granularity_minutes: int
    buffer_minutes: int
    items: List[WeekPlanItem] = Field(default_factory=list)
    unscheduled: List[WeekPlanUnscheduledItem] = Field(default_factory=list)
    total_minutes: int = 0
    warnings: List[str] = Field(default_factory=list)
    generated_at: datetime
    revision: str


# ============================================
# CALENDAR SOURCE MODELS
# ============================================

class CalendarSourceNotFoundError(LookupError):
    pass


class CalendarSourceConflictError(ValueError):
    pass


class FetchStatus(str, Enum):
    NEVER_SYNCED = "never_synced"
    OK = "ok"
    ERROR = "error"


SOURCE_URL_PATTERN = re.compile(r"(https?|webcal)://\S+", re.IGNORECASE)
COLOR_PATTERN = re.compile(r"#[0-9A-Fa-f]{6}")


def _check_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValueError("name is required")
    return value.strip()


def _check_color(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not COLOR_PATTERN.fullmatch(value):
        raise ValueError(f"Invalid color '{value}'. Use #RRGGBB")
    return value.upper()


class CalendarSource(BaseModel):
    """An external ICS calendar whose events block planning time."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    url: str
    enabled: bool = True
    color: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    fetch_status: FetchStatus = FetchStatus.NEVER_SYNCED
    fetch_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CalendarSourceCreate(BaseModel):
    name: str = Field(default=None, validate_default=True)
    url: str = Field(default=None, validate_default=True)
    color: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def check_name(cls, value):
        return _check_name(value if value is not None else "")

    @field_validator("url", mode="before")
    @classmethod
    def check_url(cls, value):
        if not isinstance(value, str) or not SOURCE_URL_PATTERN.fullmatch(value.strip()):
            raise ValueError("url must be an http(s) or webcal URL")
        return value.strip()

    @field_validator("color", mode="before")
    @classmethod
    def check_color(cls, value):
        return _check_color(value)


class CalendarSourceUpdate(BaseModel):
    name: Optional[str] = None
    enabled: Optional[bool] = None
    color: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def check_name(cls, value):
        return _check_name(value)

    @field_validator("enabled", mode="before")
    @classmethod
    def check_enabled(cls, value):
        if value is not None and not isinstance(value, bool):
            raise ValueError("enabled must be a boolean")
        return value

    @field_validator("color", mode="before")
    @classmethod
    def check_color(cls, value):
        return _check_color(value)


class CalendarSourceList(BaseModel):
    sources: List[CalendarSource] = Field(default_factory=list)


# ============================================
# FEED MODELS
# ============================================

class FeedToken(BaseModel):
    token: str
    expires_at: datetime


class IcsFeed(BaseModel):
    ics: str
    generated_at: datetime
    revision: str


class FeedPublishResponse(BaseModel):
    https_url: str
    webcal_url: str
    expires_at: datetime


# ============================================
# API RESPONSE MODELS
# ============================================

class HealthStatus(BaseModel):
    status: str = "healthy"
    version: str = "1.0.0"
    database: str = "unknown"
