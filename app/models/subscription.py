from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
from .user import Base


class Subscription(Base):
    """
    Local mirror of one Stripe subscription. Mutated only by the webhook reconciler.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stripe_subscription_id = Column(String(100), nullable=False, unique=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)

    # Stripe status, verbatim: active|trialing|past_due|canceled|incomplete|incomplete_expired|unpaid|paused
    status = Column(String(32), nullable=False)
    plan = Column(String(100), nullable=False, default="unknown")  # Stripe price id
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    paying_user_id = Column(String(64), nullable=True)  # metadata.payingUserId set at checkout

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer", back_populates="subscriptions")

    __table_args__ = (
        Index("idx_subscription_customer_status", "customer_id", "status"),
    )
