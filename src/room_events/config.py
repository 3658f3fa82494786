"""
Configuration for room-events stores.

Uses pydantic-settings for environment variable loading.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class StoreSettings(BaseSettings):
    """Timing and analytics knobs of a RoomStore."""

    # Mutation windows
    undo_window_seconds: float = Field(
        default=15.0, gt=0, description="How long a fresh create can be undone"
    )
    restore_window_seconds: float = Field(
        default=8.0, gt=0, description="How long a soft delete offers a restore"
    )

    # Auras and special events
    aura_ttl_hours: float = Field(default=24.0, gt=0, description="Aura lifetime")
    special_event_probability: float = Field(
        default=0.25, ge=0.0, le=1.0, description="Acceptance rate of the random gate"
    )

    # Analytics defaults
    streak_horizon_days: int = Field(default=365, ge=1)
    heatmap_days: int = Field(default=90, ge=1)
    profile_window_days: int = Field(default=30, ge=1)
    activity_log_limit: int = Field(default=50, ge=1)
    timezone: Optional[str] = Field(
        default=None,
        description="IANA zone defining local days; system local time when unset",
    )

    model_config = {"env_prefix": "ROOM_EVENTS_"}
