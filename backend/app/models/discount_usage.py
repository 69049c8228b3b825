"""DiscountUsage model"""
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from app.models.base import Base, UTCDateTime, utcnow


class DiscountUsage(Base):
    """Redemption of a discount code, at most one per order"""
    __tablename__ = "discount_usages"

    id = Column(Integer, primary_key=True, index=True)
    discount_code_id = Column(String(255), nullable=False, index=True)  # Content repository id
    discount_code = Column(String(64), nullable=False)  # Upper-cased code
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    discount_amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency = Column(String(3), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
