"""
Second Brain Calendar Planner - Calendar Feed
ICS rendering of week plans and the signed tokens that grant feed access.
"""

import hashlib
import re
from datetime import datetime, timedelta
from typing import Optional

import jwt
from icalendar import Calendar, Event, vDuration

from logger import logger
from models import FeedToken, WeekPlan
from time_window import ensure_utc, utc_now


FEED_SCOPE = "calendar_feed"
PRODID = "-//Second Brain//Week Plan//EN"
UID_DOMAIN = "second-brain"


# ============================================
# FEED TOKENS
# ============================================

def create_feed_token(
    user_id: str,
    secret: str,
    expires_days: int = 180,
    algorithm: str = "HS256",
    now: Optional[datetime] = None
) -> FeedToken:
    """Sign a long-lived token that lets a calendar client read one user's feed."""
    issued_at = ensure_utc(now) if now else utc_now()
    expires_at = issued_at + timedelta(days=expires_days)
    payload = {
        "sub": user_id,
        "scope": FEED_SCOPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, secret, algorithm=algorithm)
    return FeedToken(token=token, expires_at=expires_at.replace(microsecond=0))


def verify_feed_token(token: str, secret: str, algorithm: str = "HS256") -> Optional[str]:
    """
    Verify a feed token.

    Returns:
        The user id on success, None for bad signatures, expired or malformed
        tokens and tokens carrying any scope other than calendar_feed.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm], options={"require": ["exp", "sub"]})
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected calendar feed token: {e}")
        return None

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id or claims.get("scope") != FEED_SCOPE:
        logger.info("Rejected calendar feed token: wrong subject or scope")
        return None
    return user_id


# ============================================
# ICS RENDERING
# ============================================

def event_uid(entry_path: str) -> str:
    """Stable UID for an entry, so re-publishing keeps the same event identity."""
    slug = re.sub(r"[^A-Za-z0-9]+", "-", entry_path).strip("-").lower()
    digest = hashlib.sha1(entry_path.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}@{UID_DOMAIN}"


def revision_sequence(revision: str) -> int:
    """ICS SEQUENCE derived from the plan revision (fits a signed 32-bit int)."""
    return int(revision[:7], 16)


def render_plan_ics(
    plan: WeekPlan,
    calendar_name: str = "Second Brain Week Plan",
    refresh_minutes: int = 15
) -> str:
    """Render placed items as a VCALENDAR document. Unscheduled items are left out."""
    refresh = timedelta(minutes=refresh_minutes)
    generated_at = ensure_utc(plan.generated_at).replace(microsecond=0)
    sequence = revision_sequence(plan.revision)

    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")
    cal.add("x-wr-calname", calendar_name)
    cal.add("refresh-interval", vDuration(refresh), parameters={"VALUE": "DURATION"})
    cal.add("x-published-ttl", vDuration(refresh))

    for item in plan.items:
        event = Event()
        event.add("uid", event_uid(item.entry_path))
        event.add("dtstamp", generated_at)
        event.add("last-modified", generated_at)
        event.add("sequence", sequence)
        event.add("dtstart", ensure_utc(item.start))
        event.add("dtend", ensure_utc(item.end))
        event.add("summary", item.title)
        event.add("description", f"{item.entry_path} - {item.reason}")
        cal.add_component(event)

    return cal.to_ical().decode("utf-8")
