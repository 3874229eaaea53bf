"""
Second Brain Calendar Planner - Calendar Service
Fetches planner inputs concurrently and runs the pure scheduler over them.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable, List, Union

from pydantic import ValidationError

from config import CalendarConfig, AuthConfig, get_calendar_config, get_auth_config
from database import CalendarStore
from feed import create_feed_token, verify_feed_token, render_plan_ics
from logger import logger
from models import (
    CalendarSettings, CalendarSource, CalendarSourceCreate, CalendarSourceNotFoundError,
    CalendarSourceUpdate, FeedToken, IcsFeed, WeekPlan, WeekPlanOptions, first_error_message,
    MIN_DAYS, MAX_DAYS, MIN_GRANULARITY_MINUTES, MAX_GRANULARITY_MINUTES,
    MIN_BUFFER_MINUTES, MAX_BUFFER_MINUTES
)
from scheduler import build_week_plan, resolve_window
from time_window import CalendarValidationError, add_days, parse_bounded_int, start_of_day_utc, utc_now


class CalendarService:
    """Week planning, calendar sources, ICS feed and feed-token operations for one deployment."""

    def __init__(
        self,
        store=None,
        clock: Callable[[], datetime] = utc_now,
        calendar_config: Optional[CalendarConfig] = None,
        auth_config: Optional[AuthConfig] = None
    ):
        self.store = store or CalendarStore()
        self.clock = clock
        self.calendar_config = calendar_config or get_calendar_config()
        self.auth_config = auth_config or get_auth_config()

    # ============================================
    # OPTIONS
    # ============================================

    def build_options(
        self,
        start_date: Optional[str] = None,
        days: Union[int, str, None] = None,
        granularity_minutes: Union[int, str, None] = None,
        buffer_minutes: Union[int, str, None] = None,
        feed: bool = False
    ) -> WeekPlanOptions:
        """Fill missing options from configuration and validate the result."""
        config = self.calendar_config
        days = parse_bounded_int("days", days, MIN_DAYS, MAX_DAYS)
        granularity_minutes = parse_bounded_int(
            "granularity_minutes", granularity_minutes, MIN_GRANULARITY_MINUTES, MAX_GRANULARITY_MINUTES
        )
        buffer_minutes = parse_bounded_int("buffer_minutes", buffer_minutes, MIN_BUFFER_MINUTES, MAX_BUFFER_MINUTES)
        if days is None:
            days = config.feed_default_days if feed else config.default_days
        try:
            return WeekPlanOptions(
                start_date=start_date,
                days=days,
                granularity_minutes=config.default_granularity_minutes if granularity_minutes is None else granularity_minutes,
                buffer_minutes=config.default_buffer_minutes if buffer_minutes is None else buffer_minutes,
            )
        except ValidationError as e:
            raise CalendarValidationError(first_error_message(e))

    # ============================================
    # PLANNING
    # ============================================

    async def build_week_plan_for_user(self, user_id: str, options: Optional[WeekPlanOptions] = None) -> WeekPlan:
        options = options or self.build_options()
        now = self.clock()
        window = resolve_window(options, now)
        buffer = timedelta(minutes=options.buffer_minutes)
        range_start = start_of_day_utc(window.start_date) - buffer
        range_end = start_of_day_utc(add_days(window.end_date, 1)) + buffer

        try:
            candidates, settings, blocks = await asyncio.gather(
                self.store.list_candidates(user_id),
                self.store.get_settings(user_id),
                self.store.list_busy_blocks(user_id, range_start, range_end),
            )
        except ValidationError as e:
            raise CalendarValidationError(first_error_message(e))

        plan = build_week_plan(
            candidates, blocks, settings, options, now,
            grace_minutes=self.calendar_config.missed_slot_grace_minutes,
        )
        logger.info(
            f"Built week plan for {user_id}: {plan.start_date}..{plan.end_date}, "
            f"{len(plan.items)} placed, {len(plan.unscheduled)} unscheduled, revision {plan.revision}"
        )
        return plan

    async def build_ics_feed_for_user(self, user_id: str, options: Optional[WeekPlanOptions] = None) -> IcsFeed:
        options = options or self.build_options(feed=True)
        plan = await self.build_week_plan_for_user(user_id, options)
        ics = render_plan_ics(
            plan,
            calendar_name=self.calendar_config.calendar_name,
            refresh_minutes=self.calendar_config.feed_refresh_minutes,
        )
        return IcsFeed(ics=ics, generated_at=plan.generated_at, revision=plan.revision)

    # ============================================
    # SETTINGS
    # ============================================

    async def get_settings_for_user(self, user_id: str) -> CalendarSettings:
        try:
            return await self.store.get_settings(user_id)
        except ValidationError as e:
            raise CalendarValidationError(first_error_message(e))

    async def update_settings_for_user(self, user_id: str, changes: Dict[str, Any]) -> CalendarSettings:
        """Merge partial changes into the stored settings and persist them."""
        current = await self.get_settings_for_user(user_id)
        merged = {**current.model_dump(), **{k: v for k, v in changes.items() if v is not None}}
        try:
            settings = CalendarSettings(**merged)
        except ValidationError as e:
            raise CalendarValidationError(first_error_message(e))
        saved = await self.store.save_settings(user_id, settings)
        logger.info(f"Updated calendar settings for {user_id}")
        return saved

    # ============================================
    # CALENDAR SOURCES
    # ============================================

    async def list_sources_for_user(self, user_id: str) -> List[CalendarSource]:
        return await self.store.list_sources(user_id)

    async def create_source_for_user(self, user_id: str, data: Dict[str, Any]) -> CalendarSource:
        """
        Register an external calendar.

        Raises:
            CalendarValidationError: missing name, bad url or color
            CalendarSourceConflictError: the user already has a source with this url
        """
        try:
            source = CalendarSourceCreate(**data)
        except ValidationError as e:
            raise CalendarValidationError(first_error_message(e))
        created = await self.store.create_source(user_id, source)
        logger.info(f"Added calendar source {created.id} for {user_id}")
        return created

    async def update_source_for_user(self, user_id: str, source_id: str, changes: Dict[str, Any]) -> CalendarSource:
        """Rename, recolour or enable/disable a source. Disabled sources stop blocking time."""
        try:
            update = CalendarSourceUpdate(**changes)
        except ValidationError as e:
            raise CalendarValidationError(first_error_message(e))
        if update.name is None and update.enabled is None and update.color is None:
            raise CalendarValidationError("Provide at least one of name, enabled, color")

        updated = await self.store.update_source(user_id, source_id, update)
        if updated is None:
            raise CalendarSourceNotFoundError(f"Calendar source '{source_id}' not found")
        logger.info(f"Updated calendar source {source_id} for {user_id} (enabled={updated.enabled})")
        return updated

    async def delete_source_for_user(self, user_id: str, source_id: str):
        if not await self.store.delete_source(user_id, source_id):
            raise CalendarSourceNotFoundError(f"Calendar source '{source_id}' not found")
        logger.info(f"Deleted calendar source {source_id} for {user_id}")

    # ============================================
    # FEED TOKENS
    # ============================================

    def create_feed_token(self, user_id: str) -> FeedToken:
        auth = self.auth_config
        return create_feed_token(
            user_id,
            auth.jwt_secret,
            expires_days=auth.feed_token_expiry_days,
            algorithm=auth.jwt_algorithm,
        )

    def verify_feed_token(self, token: str) -> Optional[str]:
        auth = self.auth_config
        return verify_feed_token(token, auth.jwt_secret, algorithm=auth.jwt_algorithm)


# Global service instance
_calendar_service: Optional[CalendarService] = None


def get_calendar_service() -> CalendarService:
    global _calendar_service
    if _calendar_service is None:
        _calendar_service = CalendarService()
    return _calendar_service


def reset_calendar_service():
    global _calendar_service
    _calendar_service = None
