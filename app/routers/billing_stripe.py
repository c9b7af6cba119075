"""
Stripe billing endpoints: customer linking, checkout/portal sessions,
mirrored subscription status and the public pricing catalog.

Every endpoint except /pricing requires a signed-in session.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.limiter import limiter
from app.middleware.auth import SessionData, require_session
from app.schemas.billing import (
    ActiveSubscriptionResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CreateCustomerOrganizationRequest,
    CreateCustomerUserRequest,
    CustomerCreatedResponse,
    PortalSessionRequest,
    PortalSessionResponse,
    SubscriptionOut,
)
from app.services import checkout_service, customer_service, pricing_service, subscription_service
from app.services.stripe_service import StripeService, get_stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Billing Stripe"])


def _active_subscription_response(result: Optional[dict]) -> Optional[ActiveSubscriptionResponse]:
    if result is None:
        return None
    return ActiveSubscriptionResponse(
        plan=result["plan"],
        subscription=SubscriptionOut.model_validate(result["subscription"]),
    )


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

@router.post(
    "/create-customer-user",
    response_model=CustomerCreatedResponse,
    summary="Link a user to a Stripe customer",
)
@limiter.limit("10/minute")
def create_customer_user(
    body: CreateCustomerUserRequest,
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    session: SessionData = Depends(require_session),
):
    stripe_customer_id = customer_service.ensure_customer_for_user(db, stripe_service, body.user_id)
    return CustomerCreatedResponse(stripeCustomerId=stripe_customer_id)


@router.post(
    "/create-customer-organization",
    response_model=CustomerCreatedResponse,
    summary="Link an organization to a Stripe customer",
)
@limiter.limit("10/minute")
def create_customer_organization(
    body: CreateCustomerOrganizationRequest,
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    session: SessionData = Depends(require_session),
):
    stripe_customer_id = customer_service.ensure_customer_for_organization(
        db, stripe_service, body.organization_id
    )
    return CustomerCreatedResponse(stripeCustomerId=stripe_customer_id)


# ---------------------------------------------------------------------------
# Subscription status (local mirror)
# ---------------------------------------------------------------------------

@router.get(
    "/active-subscription",
    response_model=Optional[ActiveSubscriptionResponse],
    summary="Active subscription of the current billing principal",
    description="Uses the selected organization when there is one, else the signed-in user.",
)
@limiter.limit("60/minute")
def get_current_active_subscription(
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    session: SessionData = Depends(require_session),
):
    result = subscription_service.get_active_subscription_for_session(db, stripe_service, session)
    return _active_subscription_response(result)


@router.get(
    "/active-subscription/{principal_id}",
    response_model=Optional[ActiveSubscriptionResponse],
    summary="Active subscription of a user or organization",
    description="Returns null when the customer has no active subscription.",
)
@limiter.limit("60/minute")
def get_active_subscription(
    principal_id: str,
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    session: SessionData = Depends(require_session),
):
    result = subscription_service.get_active_subscription(db, stripe_service, principal_id)
    return _active_subscription_response(result)


# ---------------------------------------------------------------------------
# Checkout / portal
# ---------------------------------------------------------------------------

@router.post(
    "/create-checkout-session",
    response_model=CheckoutSessionResponse,
    summary="Create a Stripe Checkout session",
    description="The client redirects the browser to session.url.",
)
@limiter.limit("5/minute")
def create_checkout_session(
    body: CheckoutSessionRequest,
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    session: SessionData = Depends(require_session),
):
    checkout = checkout_service.create_checkout_session(
        db, stripe_service, body.customer_id, body.price_id, caller=session.user
    )
    return CheckoutSessionResponse(session=checkout)


@router.post(
    "/create-portal-session",
    response_model=PortalSessionResponse,
    summary="Create a Stripe Billing Portal session",
)
@limiter.limit("5/minute")
def create_portal_session(
    body: PortalSessionRequest,
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    session: SessionData = Depends(require_session),
):
    url = checkout_service.create_portal_session(db, stripe_service, body.customer_id)
    return PortalSessionResponse(sessionURL=url)


# ---------------------------------------------------------------------------
# GET /api/stripe/pricing  (public, no auth)
# ---------------------------------------------------------------------------

@router.get(
    "/pricing",
    summary="Active products and prices",
    description="Live read of the Stripe catalog for pricing tables. No auth required.",
)
@limiter.limit("30/minute")
def get_pricing(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
):
    return pricing_service.list_pricing(stripe_service)
