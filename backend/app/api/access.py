"""Content access API routes (course drip, event replays, booking perks)"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, OrchestrationError, to_http_exception
from app.core.security import optional_auth, require_auth
from app.db.session import get_db
from app.models.booking import Booking, BookingType
from app.schemas.access import (
    CourseAccessResult, LessonAccessResult, ReplayAccessResult, ReplayStatus, ReplayProgressRequest
)
from app.services.access_service import (
    can_access_course, can_access_lesson, can_access_replay, get_course_or_404, get_replay_status,
    increment_view_count, track_replay_view
)
from app.services.perk_service import get_booking_perks, get_perks_for_bookings

router = APIRouter(prefix="/api/access", tags=["access"])
logger = logging.getLogger(__name__)


@router.get("/courses/{course_id}", response_model=CourseAccessResult, response_model_by_alias=True)
def course_access(course_id: str, user_id: Optional[int] = Depends(optional_auth), db: Session = Depends(get_db)):
    try:
        return can_access_course(user_id, get_course_or_404(course_id), db)
    except OrchestrationError as e:
        raise to_http_exception(e)


@router.get("/courses/{course_id}/lessons/{lesson_id}", response_model=LessonAccessResult,
            response_model_by_alias=True)
def lesson_access(
    course_id: str,
    lesson_id: str,
    user_id: Optional[int] = Depends(optional_auth),
    db: Session = Depends(get_db)
):
    """Whether a lesson is unlocked for the viewer, and when it will be if not"""
    try:
        return can_access_lesson(user_id, course_id, lesson_id, db)
    except OrchestrationError as e:
        raise to_http_exception(e)


@router.get("/events/{event_id}/replay", response_model=ReplayAccessResult, response_model_by_alias=True)
def replay_access(event_id: str, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return can_access_replay(user_id, event_id, db)


@router.get("/events/{event_id}/replay/status", response_model=ReplayStatus, response_model_by_alias=True)
def replay_status(event_id: str, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return get_replay_status(user_id, event_id, db)
    except OrchestrationError as e:
        raise to_http_exception(e)


@router.post("/replays/{booking_id}/progress")
def replay_progress(
    booking_id: int,
    request_data: ReplayProgressRequest,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Report watch progress for a replay"""
    try:
        view = track_replay_view(booking_id, user_id, request_data.watched_seconds, request_data.last_position, db)
    except OrchestrationError as e:
        raise to_http_exception(e)
    return {
        "viewCount": view.view_count,
        "totalWatchedSeconds": view.total_watched_seconds,
        "lastPosition": view.last_position
    }


@router.post("/replays/{booking_id}/view")
def replay_view_started(booking_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Count a new playback session"""
    try:
        counted = increment_view_count(booking_id, user_id, db)
    except OrchestrationError as e:
        raise to_http_exception(e)
    return {"counted": counted}


@router.get("/bookings")
def my_event_bookings(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """The user's event bookings with their perks"""
    bookings = db.query(Booking).filter(
        Booking.user_id == user_id,
        Booking.booking_type == BookingType.EVENT
    ).order_by(Booking.created_at.desc()).all()
    perks_by_booking = {p.booking_id: p for p in get_perks_for_bookings([b.id for b in bookings], db)}

    return {
        "bookings": [
            {
                "bookingId": b.id,
                "eventId": b.resource_id,
                "seats": (b.extra_data or {}).get("seats", 1),
                "perks": [
                    a.model_dump(mode="json", by_alias=True)
                    for a in (perks_by_booking[b.id].allocations if b.id in perks_by_booking else [])
                ]
            }
            for b in bookings
        ]
    }


@router.get("/bookings/{booking_id}/perks")
def booking_perks(booking_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Perks allocated to one of the user's event bookings"""
    booking = db.query(Booking).filter(Booking.id == booking_id, Booking.user_id == user_id).first()
    if not booking:
        raise to_http_exception(NotFoundError("Booking not found"))
    return {
        "bookingId": booking.id,
        "perks": [p.model_dump(mode="json", by_alias=True) for p in get_booking_perks(booking.id, db)]
    }
