"""
Schemas for the Stripe billing endpoints.

Request and top-level response keys keep the camelCase names the web client
already sends (userId, priceId, stripeCustomerId, ...).
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class CreateCustomerUserRequest(BaseModel):
    """Body for POST /api/stripe/create-customer-user"""
    user_id: str = Field(..., alias="userId", description="Internal user id")

    class Config:
        populate_by_name = True


class CreateCustomerOrganizationRequest(BaseModel):
    """Body for POST /api/stripe/create-customer-organization"""
    organization_id: str = Field(..., alias="organizationId", description="Internal organization id")

    class Config:
        populate_by_name = True


class CheckoutSessionRequest(BaseModel):
    """Body for POST /api/stripe/create-checkout-session"""
    customer_id: str = Field(
        ..., alias="customerId", description="User or organization id the plan is for"
    )
    price_id: str = Field(..., alias="priceId", description="Stripe Price ID")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"customerId": "org_8f2k", "priceId": "price_1PZ..."}
        }


class PortalSessionRequest(BaseModel):
    """Body for POST /api/stripe/create-portal-session"""
    customer_id: str = Field(..., alias="customerId", description="User or organization id")

    class Config:
        populate_by_name = True


class CustomerCreatedResponse(BaseModel):
    stripeCustomerId: str


class SubscriptionOut(BaseModel):
    """Mirrored subscription row."""
    id: int
    stripe_subscription_id: str
    customer_id: int
    status: str
    plan: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    paying_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActiveSubscriptionResponse(BaseModel):
    plan: dict[str, Any]
    subscription: SubscriptionOut


class CheckoutSessionResponse(BaseModel):
    session: dict[str, Any]


class PortalSessionResponse(BaseModel):
    sessionURL: str


class WebhookAck(BaseModel):
    received: bool = True
