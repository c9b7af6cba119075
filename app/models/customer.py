from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from .user import Base


class Customer(Base):
    """
    Customers table - links one principal (a user OR an organization) to its
    Stripe customer.

    Attributes:
        id: Internal identifier, referenced by subscriptions.customer_id
        stripe_customer_id: Stripe customer id (cus_...), globally unique
        user_id: Owning user, when the principal is a user
        organization_id: Owning organization, when the principal is an organization
        is_active: Cached "has an active or trialing subscription" flag,
            written only by the webhook reconciler

    Constraints:
        - user_id and organization_id are each unique, so concurrent first-time
          links for the same principal cannot both commit
        - exactly one of user_id / organization_id is set
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stripe_customer_id = Column(
        String(100), nullable=False, unique=True, index=True,
        comment="Stripe customer id",
    )
    user_id = Column(
        String(64), ForeignKey("users.id"), nullable=True, unique=True,
        comment="Owning user (null for organization customers)",
    )
    organization_id = Column(
        String(64), ForeignKey("organizations.id"), nullable=True, unique=True,
        comment="Owning organization (null for user customers)",
    )
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subscriptions = relationship("Subscription", back_populates="customer")

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (organization_id IS NULL)",
            name="ck_customer_single_principal",
        ),
    )
