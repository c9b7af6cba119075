"""
Webhook reconciler: applies Stripe subscription lifecycle events to the local mirror.

Flow for one delivery:
    1. verify_event(): Stripe-Signature check against the raw body; nothing else
                       runs when it fails.
    2. handle_event(): dispatch on EventKind; each event is committed on its own.

Handled events:
    - customer.subscription.created / .updated: ensure the local Customer exists
      (rebuilt from the Stripe customer's userId / organizationId metadata when
      missing), upsert the Subscription by Stripe id, recompute Customer.is_active.
    - customer.subscription.deleted: record the final status, clear is_active.
    - anything else: logged and ignored.

Every write is keyed by the Stripe id, so replaying an event converges to the
same state. There is no ordering check against Stripe's event sequence: a stale
``updated`` event delivered after a newer one wins (last write wins).
"""
import enum
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import DataIntegrityGap
from app.models import Customer, Organization, User
from app.services.customer_service import link_customer
from app.services.principals import PrincipalKind, PrincipalRef, find_customer
from app.services.stripe_service import StripeService
from app.services.subscription_service import is_active_status, snapshot_from_stripe, upsert_subscription

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    UNHANDLED = "unhandled"

    @classmethod
    def from_type(cls, event_type: Optional[str]) -> "EventKind":
        """Unknown or future Stripe event types map to UNHANDLED, never an error."""
        for kind in cls:
            if kind is not cls.UNHANDLED and kind.value == event_type:
                return kind
        return cls.UNHANDLED


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    DROPPED = "dropped"    # terminal data problem, retrying cannot help
    IGNORED = "ignored"    # event type we do not handle


def verify_event(stripe_service: StripeService, payload: bytes, signature: str) -> dict:
    """Raises SignatureInvalid; must run before anything reads the event."""
    return stripe_service.construct_event(payload, signature)


def _stripe_customer_id(sub: dict) -> str:
    customer = sub.get("customer")
    if isinstance(customer, dict):  # expanded
        return customer["id"]
    return customer


class WebhookService:

    def __init__(self, db: Session, stripe_service: StripeService):
        self.db = db
        self.stripe = stripe_service
        self._handlers = {
            EventKind.SUBSCRIPTION_CREATED: self._on_subscription_snapshot,
            EventKind.SUBSCRIPTION_UPDATED: self._on_subscription_snapshot,
            EventKind.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
        }

    def handle_event(self, event: dict) -> ReconcileOutcome:
        event_type = event.get("type")
        kind = EventKind.from_type(event_type)
        logger.info("Stripe webhook received: %s %s", event_type, event.get("id"))

        handler = self._handlers.get(kind)
        if handler is None:
            logger.warning("Unhandled Stripe event type: %s", event_type)
            return ReconcileOutcome.IGNORED

        data_obj = (event.get("data") or {}).get("object") or {}
        try:
            return handler(data_obj)
        except Exception:
            self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_subscription_snapshot(self, sub: dict) -> ReconcileOutcome:
        stripe_customer_id = _stripe_customer_id(sub)
        try:
            customer = self._ensure_local_customer(stripe_customer_id)
        except DataIntegrityGap as e:
            logger.error("Dropping event for subscription %s: %s", sub.get("id"), e.message)
            return ReconcileOutcome.DROPPED

        snapshot = snapshot_from_stripe(sub)
        upsert_subscription(self.db, customer.id, snapshot)
        customer.is_active = is_active_status(snapshot["status"])
        self.db.commit()

        logger.info(
            "Subscription %s (%s) mirrored for customer %s",
            snapshot["stripe_subscription_id"], snapshot["status"], stripe_customer_id,
        )
        return ReconcileOutcome.APPLIED

    def _on_subscription_deleted(self, sub: dict) -> ReconcileOutcome:
        stripe_customer_id = _stripe_customer_id(sub)
        customer = self._find_customer(stripe_customer_id)
        if customer is None:
            logger.error("Customer with stripeCustomerId %s not found", stripe_customer_id)
            return ReconcileOutcome.DROPPED

        # Only the status changes on an existing row; a subscription we never
        # mirrored is inserted from the snapshot so the cancellation is recorded.
        snapshot = snapshot_from_stripe(sub)
        upsert_subscription(self.db, customer.id, snapshot, update_fields=("status",))
        customer.is_active = False
        self.db.commit()

        logger.info(
            "Subscription %s deleted for customer %s",
            snapshot["stripe_subscription_id"], stripe_customer_id,
        )
        return ReconcileOutcome.APPLIED

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def _find_customer(self, stripe_customer_id: str) -> Optional[Customer]:
        return self.db.query(Customer).filter(
            Customer.stripe_customer_id == stripe_customer_id
        ).first()

    def _ensure_local_customer(self, stripe_customer_id: str) -> Customer:
        """
        Customers can be created on Stripe outside this service (e.g. by the
        sign-up hook), so a missing row is rebuilt from the Stripe customer's
        metadata. Raises DataIntegrityGap when the metadata names no principal or
        one that does not exist locally.
        """
        customer = self._find_customer(stripe_customer_id)
        if customer is not None:
            return customer

        remote = self.stripe.retrieve_customer(stripe_customer_id)
        metadata = {} if remote.get("deleted") else (remote.get("metadata") or {})
        organization_id = metadata.get("organizationId")
        user_id = metadata.get("userId")

        if organization_id:
            ref = PrincipalRef.organization(organization_id)
        elif user_id:
            ref = PrincipalRef.user(user_id)
        else:
            raise DataIntegrityGap(
                f"No userId or organizationId found in metadata for customer {stripe_customer_id}"
            )

        model = Organization if ref.kind is PrincipalKind.ORGANIZATION else User
        if self.db.get(model, ref.id) is None:
            raise DataIntegrityGap(
                f"{ref.kind.value} {ref.id} from metadata of customer {stripe_customer_id} does not exist"
            )

        linked = find_customer(self.db, ref)
        if linked is not None:
            # The principal owns another Stripe customer; the subscription is
            # attached to the linked one and this id stays unmapped, so later
            # events for it retrieve the Stripe customer again.
            logger.warning(
                "Second Stripe customer %s for %s %s (linked: %s); mirroring onto the linked customer",
                stripe_customer_id, ref.kind.value, ref.id, linked.stripe_customer_id,
            )
            return linked

        logger.info(
            "Rebuilding local customer %s for %s %s", stripe_customer_id, ref.kind.value, ref.id
        )
        return link_customer(self.db, ref, stripe_customer_id)
