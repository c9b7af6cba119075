"""
Stripe adapter: the only module that talks to the Stripe API.

Required environment variables:
    STRIPE_SECRET_KEY      : Stripe secret key (sk_live_... or sk_test_...)
    STRIPE_WEBHOOK_SECRET  : Stripe webhook signing secret (whsec_...)

Routers receive a ``StripeService`` through the ``get_stripe_service`` dependency,
so tests can swap it with ``app.dependency_overrides``. Every method returns plain
dicts and raises ``UpstreamProviderError`` when Stripe fails.
"""
import json
import logging
from functools import lru_cache
from typing import Optional

import stripe

from app.core.config import get_settings
from app.core.errors import SignatureInvalid, UpstreamProviderError

logger = logging.getLogger(__name__)


def _plain(obj) -> dict:
    """StripeObject -> plain dict (its str() is the recursive JSON form)."""
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return json.loads(str(obj))


class StripeService:

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout: int = 8,
        max_network_retries: int = 2,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self.client = stripe.StripeClient(
            api_key,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=max_network_retries,
        )

    def _call(self, what: str, fn, *args, **kwargs) -> dict:
        try:
            return _plain(fn(*args, **kwargs))
        except stripe.StripeError as e:
            logger.error("Stripe %s failed: %s", what, e)
            raise UpstreamProviderError(f"Stripe {what} failed: {e.user_message or str(e)}")

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def create_customer(
        self,
        metadata: dict,
        email: Optional[str] = None,
        name: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        params = {"metadata": metadata}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        return self._call(
            "customer create", self.client.customers.create, params=params, options=options
        )

    def retrieve_customer(self, customer_id: str) -> dict:
        """Deleted customers come back as ``{"id": ..., "deleted": true}``."""
        return self._call("customer retrieve", self.client.customers.retrieve, customer_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        subscription_metadata: Optional[dict] = None,
    ) -> dict:
        return self._call(
            "checkout session create",
            self.client.checkout.sessions.create,
            params={
                "mode": "subscription",
                "customer": customer_id,
                "line_items": [{"price": price_id, "quantity": 1}],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "subscription_data": {"metadata": subscription_metadata or {}},
            },
        )

    def create_portal_session(self, customer_id: str, return_url: str) -> dict:
        return self._call(
            "billing portal session create",
            self.client.billing_portal.sessions.create,
            params={"customer": customer_id, "return_url": return_url},
        )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_products(self) -> list[dict]:
        page = self._call(
            "product list",
            self.client.products.list,
            params={"active": True, "expand": ["data.default_price"], "limit": 100},
        )
        return page.get("data", [])

    def list_prices(self, product_id: str) -> list[dict]:
        page = self._call(
            "price list",
            self.client.prices.list,
            params={"product": product_id, "active": True, "limit": 100},
        )
        return page.get("data", [])

    def retrieve_plan(self, plan_id: str) -> dict:
        return self._call("plan retrieve", self.client.plans.retrieve, plan_id)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """
        Verify the Stripe-Signature header against the raw body and return the
        decoded event. Nothing in the payload is read before the check passes.
        """
        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(
                body, signature or "", self.webhook_secret or "", self.tolerance
            )
            event = json.loads(body)
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise SignatureInvalid(f"Webhook Error: {e}")
        if not isinstance(event, dict):
            raise SignatureInvalid("Webhook Error: event payload is not an object")
        return event


@lru_cache()
def get_stripe_service() -> StripeService:
    settings = get_settings()
    return StripeService(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        timeout=settings.STRIPE_TIMEOUT_SECONDS,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )
