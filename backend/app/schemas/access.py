"""Pydantic schemas for course drip and event replay access"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import Field
from app.schemas.checkout import CamelModel


class CourseAccessResult(CamelModel):
    has_access: bool
    reason: Literal["purchase", "membership", "free", "no_access"]
    entitlement_id: Optional[int] = None
    expires_at: Optional[datetime] = None


class LessonAccessResult(CamelModel):
    can_access: bool
    reason: Literal["available", "drip_locked", "module_locked", "no_course_access", "free_preview"]
    available_at: Optional[datetime] = None


class ReplayExpiration(CamelModel):
    expires_at: Optional[datetime] = None  # None = permanent
    days_remaining: Optional[int] = None  # None = permanent
    source: Literal["global_cutoff", "plan_based", "default", "permanent"]


class ReplayAccessResult(CamelModel):
    can_access: bool
    reason: Literal["booking_valid", "no_booking", "expired", "no_recording", "event_not_found"]
    expires_at: Optional[datetime] = None
    url: Optional[str] = None
    booking_id: Optional[int] = None
    view_count: int = 0
    total_watched_seconds: int = 0
    last_position: int = 0


class ReplayStatus(CamelModel):
    has_replay: bool
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    is_expired: bool
    has_viewed: bool
    view_count: int = 0


class ReplayProgressRequest(CamelModel):
    watched_seconds: int = Field(0, ge=0)
    last_position: int = Field(0, ge=0)


class ReplayStats(CamelModel):
    event_id: str
    total_views: int
    unique_viewers: int
    average_watched_seconds: float
