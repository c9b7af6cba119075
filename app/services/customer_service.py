"""
Customer linker: maps a principal to exactly one Stripe customer.

Usage:
    stripe_customer_id = ensure_customer_for_user(db, stripe_service, user_id)
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models import Customer, Organization, User
from app.services.principals import PrincipalRef, find_customer
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def link_customer(db: Session, ref: PrincipalRef, stripe_customer_id: str) -> Customer:
    """
    Insert the Customer row for ``ref``. If a concurrent writer committed a row
    for the same principal or the same Stripe customer first, the unique
    constraints reject ours and the winning row is returned instead.
    """
    customer = Customer(
        stripe_customer_id=stripe_customer_id,
        is_active=False,
        **{ref.customer_column.key: ref.id},
    )
    db.add(customer)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_customer(db, ref)
        if existing is None:
            existing = db.query(Customer).filter(
                Customer.stripe_customer_id == stripe_customer_id
            ).first()
        if existing is None:
            raise
        if existing.stripe_customer_id != stripe_customer_id:
            logger.warning(
                "Lost customer link race for %s %s; keeping %s, Stripe customer %s is unused",
                ref.kind.value, ref.id, existing.stripe_customer_id, stripe_customer_id,
            )
        return existing
    db.refresh(customer)
    logger.info("Linked %s %s to Stripe customer %s", ref.kind.value, ref.id, stripe_customer_id)
    return customer


def _ensure_customer(db: Session, stripe_service: StripeService, ref: PrincipalRef, **profile) -> str:
    existing = find_customer(db, ref)
    if existing is not None:
        return existing.stripe_customer_id

    stripe_customer = stripe_service.create_customer(
        metadata=ref.metadata,
        # concurrent first-time calls get the same Stripe customer back
        idempotency_key=f"billing-customer-{ref.kind.value}-{ref.id}",
        **profile,
    )
    return link_customer(db, ref, stripe_customer["id"]).stripe_customer_id


def ensure_customer_for_user(db: Session, stripe_service: StripeService, user_id: str) -> str:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return _ensure_customer(
        db, stripe_service, PrincipalRef.user(user.id), email=user.email, name=user.name
    )


def ensure_customer_for_organization(
    db: Session, stripe_service: StripeService, organization_id: str
) -> str:
    organization = db.get(Organization, organization_id)
    if organization is None:
        raise NotFound("Organization not found")
    return _ensure_customer(
        db, stripe_service, PrincipalRef.organization(organization.id), name=organization.name
    )
