"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.order import Order
from app.models.webhook_event import WebhookEvent
from app.models.subscription import Subscription
from app.models.entitlement import Entitlement
from app.models.booking import Booking
from app.models.perk_allocation import PerkAllocation
from app.models.replay_view import ReplayView
from app.models.discount_usage import DiscountUsage
from app.models.course_progress import CourseProgress

# Export all for convenience
__all__ = [
    "Base", "User", "Order", "WebhookEvent", "Subscription", "Entitlement",
    "Booking", "PerkAllocation", "ReplayView", "DiscountUsage", "CourseProgress"
]
