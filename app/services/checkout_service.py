"""
Checkout and billing-portal session initiation.

Both operations only read Customer rows; subscription state changes arrive later
through the webhook reconciler.
"""
import logging

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import CheckoutUnavailable
from app.models import User
from app.services.principals import get_customer_for, resolve_principal
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def create_checkout_session(
    db: Session,
    stripe_service: StripeService,
    principal_id: str,
    price_id: str,
    caller: User,
) -> dict:
    """
    Subscription-mode Checkout session for the principal's Stripe customer.
    The caller's id is stored as ``payingUserId`` on the resulting subscription
    so webhooks can tell who paid for an organization plan.
    """
    settings = get_settings()
    customer = get_customer_for(db, resolve_principal(db, principal_id))

    session = stripe_service.create_checkout_session(
        customer_id=customer.stripe_customer_id,
        price_id=price_id,
        success_url=settings.website_url(settings.CHECKOUT_SUCCESS_PATH),
        cancel_url=settings.website_url(settings.CHECKOUT_CANCEL_PATH),
        subscription_metadata={"payingUserId": caller.id},
    )
    if not session.get("url"):
        logger.error("Checkout session %s has no redirect URL", session.get("id"))
        raise CheckoutUnavailable(
            "Could not create checkout session",
            support=settings.SUPPORT_EMAIL,
        )

    logger.info(
        "Checkout session %s created for customer %s (price %s, by %s)",
        session.get("id"), customer.stripe_customer_id, price_id, caller.id,
    )
    return session


def create_portal_session(db: Session, stripe_service: StripeService, principal_id: str) -> str:
    settings = get_settings()
    customer = get_customer_for(db, resolve_principal(db, principal_id))

    portal_session = stripe_service.create_portal_session(
        customer_id=customer.stripe_customer_id,
        return_url=settings.website_url(settings.PORTAL_RETURN_PATH),
    )
    return portal_session["url"]
