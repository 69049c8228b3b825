"""Access service - course drip schedules and event replay windows

The calculators (calculate_drip_availability, get_replay_expiration) are pure
functions over loaded definitions; the can_access_* wrappers load state and
report a named reason for every denial.
"""
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.booking import Booking, BookingType, BookingStatus
from app.models.course_progress import CourseProgress
from app.models.entitlement import EntitlementType
from app.models.replay_view import ReplayView
from app.models.subscription import Subscription, SubscriptionStatus
from app.schemas.access import (
    CourseAccessResult, LessonAccessResult, ReplayExpiration, ReplayAccessResult, ReplayStatus, ReplayStats
)
from app.schemas.content import CourseDefinition, EventDefinition, LessonDefinition, ModuleDefinition
from app.services.content import get_content_repository
from app.services.entitlement_service import get_active_entitlement
from app.services.subscription_service import get_active_tier_ids

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Content dates without an offset are taken as UTC"""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _latest(*values: Optional[datetime]) -> Optional[datetime]:
    present = [as_utc(v) for v in values if v is not None]
    return max(present) if present else None


# ============================================================================
# COURSES
# ============================================================================

def get_course_or_404(course_id: str) -> CourseDefinition:
    course = get_content_repository().get_course(course_id)
    if not course:
        raise NotFoundError("Course not found")
    return course


def can_access_course(user_id: Optional[int], course: CourseDefinition, db: Session) -> CourseAccessResult:
    """Purchase first, then membership inclusion, then free courses"""
    if user_id:
        entitlement = get_active_entitlement(user_id, EntitlementType.COURSE, course.id, db)
        if entitlement:
            return CourseAccessResult(
                has_access=True,
                reason="purchase",
                entitlement_id=entitlement.id,
                expires_at=entitlement.expires_at
            )

        if course.included_in_membership:
            now = datetime.now(timezone.utc)
            query = db.query(Subscription).filter(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.current_period_end > now
            )
            tier_ids = [tier.id for tier in course.membership_tiers]
            if tier_ids:
                query = query.filter(Subscription.membership_tier_id.in_(tier_ids))
            subscription = query.first()
            if subscription:
                return CourseAccessResult(
                    has_access=True,
                    reason="membership",
                    expires_at=subscription.current_period_end
                )

    if course.price is not None and course.price == 0:
        return CourseAccessResult(has_access=True, reason="free")

    return CourseAccessResult(has_access=False, reason="no_access")


def get_enrollment_start(user_id: int, course_id: str, db: Session) -> Optional[datetime]:
    progress = db.query(CourseProgress).filter(
        CourseProgress.user_id == user_id,
        CourseProgress.course_id == course_id
    ).first()
    return progress.started_at if progress else None


def calculate_drip_availability(
    course: CourseDefinition,
    module: ModuleDefinition,
    lesson: LessonDefinition,
    lesson_index: int,
    enrollment_start: Optional[datetime],
    now: Optional[datetime] = None
) -> Optional[datetime]:
    """Date a lesson becomes available, or None when it is available right away

    Offset lessons count from the later of the course start and the buyer's
    enrollment. A module unlock date gates its lessons on top of the drip date.
    """
    now = now or datetime.now(timezone.utc)
    drip_date = None

    if course.drip_enabled and lesson.drip_mode != "immediate":
        anchor = _latest(course.start_date, enrollment_start) or now
        if lesson.drip_mode == "fixed":
            drip_date = as_utc(lesson.available_at)
        elif lesson.drip_mode == "offset":
            if lesson.drip_offset_days is not None:
                offset_days = lesson.drip_offset_days
            else:
                offset_days = (course.default_drip_days or 0) * lesson_index
            drip_date = anchor + timedelta(days=offset_days)
        elif course.default_drip_days:
            drip_date = anchor + timedelta(days=course.default_drip_days * lesson_index)

    return _latest(drip_date, module.unlock_date)


def can_access_lesson(user_id: Optional[int], course_id: str, lesson_id: str, db: Session) -> LessonAccessResult:
    course = get_course_or_404(course_id)
    found = course.find_lesson(lesson_id)
    if not found:
        raise NotFoundError("Lesson not found")
    module, lesson, lesson_index = found

    if lesson.is_free_preview:
        return LessonAccessResult(can_access=True, reason="free_preview")

    if not user_id or not can_access_course(user_id, course, db).has_access:
        return LessonAccessResult(can_access=False, reason="no_course_access")

    now = datetime.now(timezone.utc)
    enrollment_start = get_enrollment_start(user_id, course.id, db)
    available_at = calculate_drip_availability(course, module, lesson, lesson_index, enrollment_start, now)

    module_unlock = as_utc(module.unlock_date)
    if module_unlock and module_unlock > now:
        return LessonAccessResult(can_access=False, reason="module_locked", available_at=available_at)
    if available_at and available_at > now:
        return LessonAccessResult(can_access=False, reason="drip_locked", available_at=available_at)
    return LessonAccessResult(can_access=True, reason="available", available_at=available_at)


# ============================================================================
# EVENT REPLAYS
# ============================================================================

def get_replay_expiration(event: EventDefinition, tier_ids: List[str],
                          now: Optional[datetime] = None) -> ReplayExpiration:
    """Earlier of the recording's global cutoff and the buyer's plan window

    The first replay_by_plan entry whose tier the buyer holds wins; a
    duration of 0 days means the plan never expires on its own. Without a
    matching plan the recording's default duration applies.
    """
    now = now or datetime.now(timezone.utc)
    recording = event.recording
    event_date = as_utc(event.event_date)
    cutoff = as_utc(recording.available_until) if recording else None

    window_end = None
    window_source = "permanent"
    if recording:
        plan = next(
            (cfg for cfg in recording.replay_by_plan if cfg.tier and cfg.tier.id in tier_ids),
            None
        )
        if plan:
            if plan.duration_days > 0:
                window_end = event_date + timedelta(days=plan.duration_days)
                window_source = "plan_based"
        elif recording.replay_duration_days:
            window_end = event_date + timedelta(days=recording.replay_duration_days)
            window_source = "default"

    if window_end and cutoff:
        expires_at, source = (cutoff, "global_cutoff") if cutoff < window_end else (window_end, window_source)
    elif window_end:
        expires_at, source = window_end, window_source
    elif cutoff:
        expires_at, source = cutoff, "global_cutoff"
    else:
        return ReplayExpiration(source="permanent")

    remaining = (expires_at - now).total_seconds()
    days_remaining = max(0, math.ceil(remaining / 86400))
    return ReplayExpiration(expires_at=expires_at, days_remaining=days_remaining, source=source)


def get_event_booking(user_id: int, event_id: str, db: Session) -> Optional[Booking]:
    """The user's confirmed or completed booking for an event"""
    return db.query(Booking).filter(
        Booking.user_id == user_id,
        Booking.booking_type == BookingType.EVENT,
        Booking.resource_id == event_id,
        Booking.status.in_((BookingStatus.CONFIRMED, BookingStatus.COMPLETED))
    ).order_by(Booking.created_at.desc()).first()


def get_replay_view(booking_id: int, db: Session) -> Optional[ReplayView]:
    return db.query(ReplayView).filter(ReplayView.booking_id == booking_id).first()


def can_access_replay(user_id: int, event_id: str, db: Session) -> ReplayAccessResult:
    event = get_content_repository().get_event(event_id)
    if not event:
        return ReplayAccessResult(can_access=False, reason="event_not_found")
    if not event.recording or not event.recording.url:
        return ReplayAccessResult(can_access=False, reason="no_recording")

    booking = get_event_booking(user_id, event_id, db)
    if not booking:
        return ReplayAccessResult(can_access=False, reason="no_booking")

    now = datetime.now(timezone.utc)
    expiration = get_replay_expiration(event, get_active_tier_ids(user_id, db), now)
    if expiration.expires_at and now > expiration.expires_at:
        return ReplayAccessResult(
            can_access=False,
            reason="expired",
            expires_at=expiration.expires_at,
            booking_id=booking.id
        )

    view = get_replay_view(booking.id, db)
    return ReplayAccessResult(
        can_access=True,
        reason="booking_valid",
        expires_at=expiration.expires_at,
        url=event.recording.url,
        booking_id=booking.id,
        view_count=view.view_count if view else 0,
        total_watched_seconds=view.total_watched_seconds if view else 0,
        last_position=view.last_position if view else 0
    )


def get_replay_status(user_id: int, event_id: str, db: Session) -> ReplayStatus:
    event = get_content_repository().get_event(event_id)
    if not event:
        raise NotFoundError("Event not found")

    booking = get_event_booking(user_id, event_id, db)
    has_replay = bool(event.recording and event.recording.url and booking)
    if not has_replay:
        return ReplayStatus(has_replay=False, is_expired=False, has_viewed=False)

    now = datetime.now(timezone.utc)
    expiration = get_replay_expiration(event, get_active_tier_ids(user_id, db), now)
    view = get_replay_view(booking.id, db)
    return ReplayStatus(
        has_replay=True,
        expires_at=expiration.expires_at,
        days_remaining=expiration.days_remaining,
        is_expired=bool(expiration.expires_at and now > expiration.expires_at),
        has_viewed=view is not None,
        view_count=view.view_count if view else 0
    )


def _get_owned_event_booking(booking_id: int, user_id: int, db: Session) -> Booking:
    booking = db.query(Booking).filter(
        Booking.id == booking_id,
        Booking.user_id == user_id,
        Booking.booking_type == BookingType.EVENT
    ).first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def track_replay_view(booking_id: int, user_id: int, watched_seconds: int, last_position: int,
                      db: Session) -> ReplayView:
    """Record watch progress, creating the row on first report"""
    booking = _get_owned_event_booking(booking_id, user_id, db)
    now = datetime.now(timezone.utc)

    view = get_replay_view(booking.id, db)
    if view is None:
        view = ReplayView(
            booking_id=booking.id,
            event_id=booking.resource_id,
            user_id=user_id,
            view_count=1,
            total_watched_seconds=watched_seconds,
            last_position=last_position,
            first_viewed_at=now,
            last_watched_at=now
        )
        db.add(view)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent first report created the row; fold ours into it
            db.rollback()
            view = get_replay_view(booking.id, db)
        else:
            db.refresh(view)
            return view

    view.total_watched_seconds = (view.total_watched_seconds or 0) + watched_seconds
    view.last_position = last_position
    view.last_watched_at = now
    db.commit()
    db.refresh(view)
    return view


def increment_view_count(booking_id: int, user_id: int, db: Session) -> bool:
    """Count a new playback session; nothing to count before the first progress report"""
    booking = _get_owned_event_booking(booking_id, user_id, db)
    view = get_replay_view(booking.id, db)
    if view is None:
        return False
    view.view_count = (view.view_count or 0) + 1
    view.last_watched_at = datetime.now(timezone.utc)
    db.commit()
    return True


def get_event_replay_stats(event_id: str, db: Session) -> ReplayStats:
    total_views, unique_viewers, average_seconds = db.query(
        func.coalesce(func.sum(ReplayView.view_count), 0),
        func.count(func.distinct(ReplayView.user_id)),
        func.coalesce(func.avg(ReplayView.total_watched_seconds), 0)
    ).filter(ReplayView.event_id == event_id).one()
    return ReplayStats(
        event_id=event_id,
        total_views=int(total_views),
        unique_viewers=int(unique_viewers),
        average_watched_seconds=round(float(average_seconds), 1)
    )
