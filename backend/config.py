"""
Second Brain Calendar Planner - Configuration Management
Supports .env files and runtime configuration for planning windows, feeds and auth.
"""

from typing import Dict, Any
from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


# ============================================
# PLANNER CONFIGURATION
# ============================================

class CalendarConfig(BaseSettings):
    """
    Week planner defaults.
    Request options override these; bounds mirror the API limits.
    """
    default_days: int = Field(
        default=7,
        ge=1,
        le=14,
        description="Days covered by a plan when the caller does not ask for a window size"
    )
    feed_default_days: int = Field(
        default=14,
        ge=1,
        le=14,
        description="Days covered by the published ICS feed"
    )
    default_granularity_minutes: int = Field(
        default=15,
        ge=5,
        le=60,
        description="Step used by the flexible packer when probing for free slots"
    )
    default_buffer_minutes: int = Field(
        default=10,
        ge=0,
        le=120,
        description="Padding added around imported busy blocks"
    )
    missed_slot_grace_minutes: int = Field(
        default=15,
        ge=0,
        le=120,
        description="Grace period before a passed fixed appointment is rescheduled"
    )
    default_task_duration_minutes: int = Field(
        default=30,
        ge=5,
        le=480,
        description="Duration used for tasks without an explicit duration"
    )
    default_project_duration_minutes: int = Field(
        default=90,
        ge=5,
        le=480,
        description="Duration of a project momentum block"
    )
    feed_refresh_minutes: int = Field(
        default=15,
        ge=5,
        le=1440,
        description="Refresh interval advertised to calendar clients"
    )
    calendar_name: str = Field(
        default="Second Brain Week Plan",
        description="Display name of the published calendar"
    )

    model_config = {
        "env_prefix": "CALENDAR_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# AUTH CONFIGURATION
# ============================================

class AuthConfig(BaseSettings):
    """Signing configuration for calendar feed tokens."""

    jwt_secret: str = Field(
        default="change-me-in-production",
        description="Secret used to sign feed tokens"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )
    feed_token_expiry_days: int = Field(
        default=180,
        ge=1,
        le=730,
        description="Lifetime of a published calendar feed token"
    )
    default_user_id: str = Field(
        default="default",
        description="User served when a request carries no X-User-Id header"
    )

    model_config = {
        "env_prefix": "AUTH_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# CACHED CONFIGURATION INSTANCES
# ============================================

@lru_cache()
def get_calendar_config() -> CalendarConfig:
    """Get cached planner configuration instance."""
    return CalendarConfig()


@lru_cache()
def get_auth_config() -> AuthConfig:
    """Get cached auth configuration instance."""
    return AuthConfig()


def reload_config():
    """Clear configuration cache and reload from environment."""
    get_calendar_config.cache_clear()
    get_auth_config.cache_clear()


# ============================================
# CONFIGURATION SUMMARY
# ============================================

def get_config_summary() -> Dict[str, Any]:
    """
    Get a summary of all configuration values.
    Secrets are reported only as present/absent.
    """
    calendar = get_calendar_config()
    auth = get_auth_config()

    return {
        "calendar": {
            "default_days": calendar.default_days,
            "feed_default_days": calendar.feed_default_days,
            "granularity_minutes": calendar.default_granularity_minutes,
            "buffer_minutes": calendar.default_buffer_minutes,
            "missed_slot_grace_minutes": calendar.missed_slot_grace_minutes,
            "refresh_minutes": calendar.feed_refresh_minutes,
            "calendar_name": calendar.calendar_name,
        },
        "auth": {
            "has_secret": bool(auth.jwt_secret),
            "algorithm": auth.jwt_algorithm,
            "feed_token_expiry_days": auth.feed_token_expiry_days,
        },
    }
