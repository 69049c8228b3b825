"""Order model"""
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, JSON
from sqlalchemy.orm import relationship
from app.models.base import Base, UTCDateTime, utcnow


class OrderStatus:
    """Internal payment status taxonomy"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class ProductType:
    SESSION = "SESSION"
    EVENT = "EVENT"
    MEMBERSHIP = "MEMBERSHIP"
    COURSE = "COURSE"
    PRODUCT = "PRODUCT"
    PREMIUM_CONTENT = "PREMIUM_CONTENT"

    ALL = (SESSION, EVENT, MEMBERSHIP, COURSE, PRODUCT, PREMIUM_CONTENT)


class Order(Base):
    """A unit of purchase intent, kept forever as an audit record"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)  # PREFIX-YYYYMMDD-XXXX
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    guest_email = Column(String(255), nullable=True)
    guest_name = Column(String(255), nullable=True)
    order_type = Column(String(32), nullable=False)  # ProductType
    item_id = Column(String(255), nullable=False)
    item_name = Column(String(255), nullable=False)
    original_amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    discount_amount = Column(Numeric(12, 2, asdecimal=False), default=0, nullable=False)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)  # Final amount charged
    currency = Column(String(3), nullable=False)  # 'COP' or 'USD'
    payment_method = Column(String(32), nullable=True)  # WOMPI_CARD, EPAYCO_PAYPAL, ...
    payment_status = Column(String(20), default=OrderStatus.PENDING, nullable=False, index=True)
    gateway_transaction_id = Column(String(255), nullable=True, index=True)  # Payment link / provider order id
    discount_code_id = Column(String(255), nullable=True)
    discount_code = Column(String(64), nullable=True)
    extra_data = Column("metadata", JSON, nullable=True)  # Request snapshot, customer contact, gateway record
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="orders")
