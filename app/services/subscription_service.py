"""
Subscription mirror: local read model of Stripe subscription state.

Reads never list subscriptions on Stripe: existence and status come from the
``subscriptions`` table, only plan display data is fetched live. Writes happen
exclusively through ``upsert_subscription``, called by the webhook reconciler.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.models import Customer, Subscription
from app.services.principals import PrincipalRef, billing_principal, find_customer, get_customer_for, resolve_principal
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"active", "trialing"})

_SNAPSHOT_FIELDS = (
    "status",
    "plan",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "paying_user_id",
)


def is_active_status(status: Optional[str]) -> bool:
    return status in ACTIVE_STATUSES


def _from_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def snapshot_from_stripe(sub: dict) -> dict:
    """
    Map a Stripe subscription object onto the mirror columns.

    Newer Stripe API versions moved the period bounds from the subscription to
    its items, so the first item is used as a fallback.
    """
    items = (sub.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}
    metadata = sub.get("metadata") or {}

    return {
        "stripe_subscription_id": sub["id"],
        "status": sub["status"],
        "plan": price.get("id") or "unknown",
        "current_period_start": _from_timestamp(
            sub.get("current_period_start") or first_item.get("current_period_start")
        ),
        "current_period_end": _from_timestamp(
            sub.get("current_period_end") or first_item.get("current_period_end")
        ),
        "cancel_at_period_end": bool(sub.get("cancel_at_period_end")),
        "paying_user_id": metadata.get("payingUserId"),
    }


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Atomic upsert is not supported on {dialect}")
    return insert


def upsert_subscription(
    db: Session,
    customer_id: int,
    snapshot: dict,
    update_fields: Iterable[str] = _SNAPSHOT_FIELDS,
) -> None:
    """
    Single ``INSERT ... ON CONFLICT (stripe_subscription_id) DO UPDATE`` so two
    deliveries for the same subscription cannot interleave a read and a write.
    A new row gets the whole snapshot; an existing row only ``update_fields``.
    The owning customer of an existing row never changes. Does not commit.
    """
    now = datetime.utcnow()
    insert = _dialect_insert(db)
    stmt = insert(Subscription).values(
        customer_id=customer_id,
        created_at=now,
        updated_at=now,
        **snapshot,
    )
    changes = {field: stmt.excluded[field] for field in update_fields}
    changes["updated_at"] = now
    stmt = stmt.on_conflict_do_update(
        index_elements=["stripe_subscription_id"],
        set_=changes,
    )
    db.execute(stmt)


def _active_subscription_row(db: Session, customer: Customer) -> Optional[Subscription]:
    return db.query(Subscription).filter(
        Subscription.customer_id == customer.id,
        Subscription.status == "active",
    ).order_by(Subscription.current_period_end.desc()).first()


def _with_plan(stripe_service: StripeService, subscription: Subscription) -> dict:
    return {
        "plan": stripe_service.retrieve_plan(subscription.plan),
        "subscription": subscription,
    }


def get_active_subscription(
    db: Session, stripe_service: StripeService, principal_id: str
) -> Optional[dict]:
    """
    ``{"plan", "subscription"}`` for the principal's active subscription, or None.
    Unknown principals and principals without a customer raise NotFound; having
    no active subscription is a normal result.
    """
    customer = get_customer_for(db, resolve_principal(db, principal_id))
    subscription = _active_subscription_row(db, customer)
    if subscription is None:
        return None
    return _with_plan(stripe_service, subscription)


def get_active_subscription_for_session(
    db: Session, stripe_service: StripeService, session
) -> Optional[dict]:
    """Same lookup for the session's billing principal; no customer yet means None."""
    ref: PrincipalRef = billing_principal(session)
    customer = find_customer(db, ref)
    if customer is None:
        return None
    subscription = _active_subscription_row(db, customer)
    if subscription is None:
        return None
    return _with_plan(stripe_service, subscription)
