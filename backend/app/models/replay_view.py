"""ReplayView model"""
from sqlalchemy import Column, Integer, String, ForeignKey
from app.models.base import Base, UTCDateTime, utcnow


class ReplayView(Base):
    """Watch progress for an event recording, one row per booking"""
    __tablename__ = "replay_views"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, nullable=False)
    event_id = Column(String(255), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    view_count = Column(Integer, default=1, nullable=False)
    total_watched_seconds = Column(Integer, default=0, nullable=False)
    last_position = Column(Integer, default=0, nullable=False)
    first_viewed_at = Column(UTCDateTime, default=utcnow, nullable=False)
    last_watched_at = Column(UTCDateTime, default=utcnow, nullable=False)
