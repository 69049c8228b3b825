"""CourseProgress model"""
from sqlalchemy import Column, Integer, String, Float, ForeignKey, UniqueConstraint
from app.models.base import Base, UTCDateTime, utcnow


class CourseProgress(Base):
    """Per-user course enrollment; started_at anchors drip schedules"""
    __tablename__ = "course_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_course_progress_user_course"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String(255), nullable=False, index=True)
    completion_percentage = Column(Float, default=0, nullable=False)
    started_at = Column(UTCDateTime, default=utcnow, nullable=False)
    last_accessed_at = Column(UTCDateTime, default=utcnow, nullable=False)
    completed_at = Column(UTCDateTime, nullable=True)
