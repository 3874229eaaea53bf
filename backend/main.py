"""
Second Brain Calendar Planner - FastAPI Backend
Week plan, calendar settings, calendar sources and the published ICS feed
"""

import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from calendar_service import CalendarService, get_calendar_service
from config import get_auth_config, get_config_summary
from database import db, check_database, ensure_calendar_tables
from logger import logger
from models import (
    CalendarSettings, CalendarSettingsUpdate, CalendarSource, CalendarSourceConflictError,
    CalendarSourceList, CalendarSourceNotFoundError, FeedPublishResponse, HealthStatus, WeekPlan
)
from time_window import CalendarValidationError


VERSION = "1.0.0"
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")

FEED_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
    "Content-Disposition": 'inline; filename="second-brain-week-plan.ics"',
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await db.connect()
    await ensure_calendar_tables()
    logger.info(f"Server started (version {VERSION})")
    yield
    logger.info("Server shutting down")
    await db.disconnect()


app = FastAPI(
    title="Second Brain Calendar Planner",
    description="Plans pending tasks and projects into working hours and publishes an ICS feed",
    version=VERSION,
    lifespan=lifespan
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity is resolved upstream; fall back to the single configured user."""
    return x_user_id or get_auth_config().default_user_id


# ============================================
# HEALTH & STATUS
# ============================================

@app.get("/health", response_model=HealthStatus)
@app.get("/api/health", response_model=HealthStatus)
async def health_check():
    """Check API and database health."""
    return HealthStatus(status="healthy", version=VERSION, database=await check_database())


@app.get("/api/config")
async def config_summary():
    """Non-secret configuration values."""
    return get_config_summary()


# ============================================
# WEEK PLAN
# ============================================

@app.get("/api/calendar/plan-week", response_model=WeekPlan)
async def plan_week(
    start_date: Optional[str] = None,
    days: Optional[str] = None,
    granularity_minutes: Optional[str] = None,
    buffer_minutes: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    """Plan pending tasks and active projects into the user's working hours."""
    try:
        options = service.build_options(start_date, days, granularity_minutes, buffer_minutes)
        return await service.build_week_plan_for_user(user_id, options)
    except CalendarValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================
# CALENDAR SETTINGS
# ============================================

@app.get("/api/calendar/settings", response_model=CalendarSettings)
async def read_calendar_settings(
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    try:
        return await service.get_settings_for_user(user_id)
    except CalendarValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.put("/api/calendar/settings", response_model=CalendarSettings)
async def update_calendar_settings(
    update: CalendarSettingsUpdate,
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    """Update working hours and working days (0 = Sunday)."""
    try:
        return await service.update_settings_for_user(user_id, update.model_dump())
    except CalendarValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================
# CALENDAR SOURCES
# ============================================

@app.get("/api/calendar/sources", response_model=CalendarSourceList)
async def list_calendar_sources(
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    return CalendarSourceList(sources=await service.list_sources_for_user(user_id))


@app.post("/api/calendar/sources", response_model=CalendarSource, status_code=201)
async def create_calendar_source(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    """Register an external ICS calendar: {name, url, color?}."""
    try:
        return await service.create_source_for_user(user_id, payload or {})
    except CalendarSourceConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CalendarValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.patch("/api/calendar/sources/{source_id}", response_model=CalendarSource)
async def update_calendar_source(
    source_id: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    """Update {name, enabled, color}. Disabled sources no longer block planning time."""
    try:
        return await service.update_source_for_user(user_id, source_id, payload or {})
    except CalendarSourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CalendarValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/calendar/sources/{source_id}", status_code=204)
async def delete_calendar_source(
    source_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    try:
        await service.delete_source_for_user(user_id, source_id)
    except CalendarSourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)


# ============================================
# PUBLISHED FEED
# ============================================

@app.get("/api/calendar/publish", response_model=FeedPublishResponse)
async def publish_calendar(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: CalendarService = Depends(get_calendar_service)
):
    """Mint a feed token and return subscribable URLs."""
    feed_token = service.create_feed_token(user_id)
    https_url = str(request.url_for("calendar_feed").include_query_params(token=feed_token.token))
    webcal_url = "webcal://" + https_url.split("://", 1)[1]
    logger.info(f"Published calendar feed for {user_id}")
    return FeedPublishResponse(https_url=https_url, webcal_url=webcal_url, expires_at=feed_token.expires_at)


@app.get("/api/calendar/feed.ics", name="calendar_feed")
async def calendar_feed(
    token: Optional[str] = None,
    start_date: Optional[str] = None,
    days: Optional[str] = None,
    granularity_minutes: Optional[str] = None,
    buffer_minutes: Optional[str] = None,
    service: CalendarService = Depends(get_calendar_service)
):
    """Token-authenticated ICS export of the week plan."""
    if not token:
        raise HTTPException(status_code=401, detail="Missing calendar token")

    user_id = service.verify_feed_token(token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid calendar token")

    try:
        options = service.build_options(start_date, days, granularity_minutes, buffer_minutes, feed=True)
        feed = await service.build_ics_feed_for_user(user_id, options)
    except CalendarValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return Response(
        content=feed.ics,
        media_type="text/calendar; charset=utf-8",
        headers={**FEED_HEADERS, "X-Plan-Revision": feed.revision},
    )


# ============================================
# RUN SERVER
# ============================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
