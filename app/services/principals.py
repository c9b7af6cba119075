"""
Billing principals: the user or organization a Stripe customer belongs to.

Callers pass a raw id; ``resolve_principal`` turns it into a tagged ``PrincipalRef``
once, and every customer lookup goes through that reference instead of probing
``user_id`` and ``organization_id`` independently.
"""
import enum
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models import Customer, Organization, User


class PrincipalKind(str, enum.Enum):
    USER = "user"
    ORGANIZATION = "organization"


@dataclass(frozen=True)
class PrincipalRef:
    kind: PrincipalKind
    id: str

    @classmethod
    def user(cls, user_id: str) -> "PrincipalRef":
        return cls(PrincipalKind.USER, user_id)

    @classmethod
    def organization(cls, organization_id: str) -> "PrincipalRef":
        return cls(PrincipalKind.ORGANIZATION, organization_id)

    @property
    def customer_column(self):
        if self.kind is PrincipalKind.ORGANIZATION:
            return Customer.organization_id
        return Customer.user_id

    @property
    def metadata(self) -> dict:
        """Stripe customer metadata carrying the internal id."""
        if self.kind is PrincipalKind.ORGANIZATION:
            return {"organizationId": self.id}
        return {"userId": self.id}


def resolve_principal(db: Session, principal_id: str) -> PrincipalRef:
    """
    Organizations take precedence over users when both tables hold the id
    (ids are opaque strings from the auth service and should never collide).
    """
    if db.get(Organization, principal_id) is not None:
        return PrincipalRef.organization(principal_id)
    if db.get(User, principal_id) is not None:
        return PrincipalRef.user(principal_id)
    raise NotFound(f"No user or organization with id {principal_id}")


def billing_principal(session) -> PrincipalRef:
    """
    Billing principal = active organization if one is selected in the session,
    else the signed-in user.
    """
    if session.active_organization_id:
        return PrincipalRef.organization(session.active_organization_id)
    return PrincipalRef.user(session.user.id)


def find_customer(db: Session, ref: PrincipalRef) -> Optional[Customer]:
    return db.query(Customer).filter(ref.customer_column == ref.id).first()


def get_customer_for(db: Session, ref: PrincipalRef) -> Customer:
    customer = find_customer(db, ref)
    if customer is None:
        raise NotFound("Customer not found")
    return customer
