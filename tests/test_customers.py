import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models import Customer
from app.services.customer_service import ensure_customer_for_organization, ensure_customer_for_user


def test_create_customer_user(client: TestClient, db_session: Session, fake_stripe, auth_headers):
    response = client.post("/api/stripe/create-customer-user", json={"userId": "u1"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"stripeCustomerId": "cus_test_1"}

    created = fake_stripe.created_customers[0]
    assert created["email"] == "ada@example.com"
    assert created["name"] == "Ada Lovelace"
    assert created["metadata"] == {"userId": "u1"}

    customer = db_session.query(Customer).one()
    assert customer.stripe_customer_id == "cus_test_1"
    assert customer.user_id == "u1"
    assert customer.organization_id is None
    assert customer.is_active is False


def test_create_customer_organization(client: TestClient, db_session: Session, fake_stripe, auth_headers, organization):
    response = client.post(
        "/api/stripe/create-customer-organization",
        json={"organizationId": "org1"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    created = fake_stripe.created_customers[0]
    assert created["metadata"] == {"organizationId": "org1"}
    assert created["email"] is None
    assert created["name"] == "Analytical Engines"

    customer = db_session.query(Customer).one()
    assert customer.organization_id == "org1"
    assert customer.user_id is None


def test_create_customer_requires_session(client: TestClient, db_session: Session, fake_stripe, user):
    response = client.post("/api/stripe/create-customer-user", json={"userId": "u1"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "authentication_required"
    assert fake_stripe.created_customers == []


def test_create_customer_unknown_user(client: TestClient, fake_stripe, auth_headers):
    response = client.post("/api/stripe/create-customer-user", json={"userId": "nobody"}, headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "User not found"
    assert fake_stripe.created_customers == []


def test_create_customer_unknown_organization(client: TestClient, fake_stripe, auth_headers):
    response = client.post(
        "/api/stripe/create-customer-organization",
        json={"organizationId": "org_missing"},
        headers=auth_headers,
    )

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Organization not found"


def test_existing_link_is_reused(db_session: Session, fake_stripe, user_customer):
    assert ensure_customer_for_user(db_session, fake_stripe, "u1") == "cus_1"
    assert fake_stripe.created_customers == []


def test_idempotency_key_is_per_principal(db_session: Session, fake_stripe, user, organization):
    ensure_customer_for_user(db_session, fake_stripe, "u1")
    ensure_customer_for_organization(db_session, fake_stripe, "org1")

    keys = [c["idempotency_key"] for c in fake_stripe.created_customers]
    assert keys == ["billing-customer-user-u1", "billing-customer-organization-org1"]


def test_concurrent_first_link_keeps_one_row(db_session: Session, fake_stripe, user):
    def competing_request():
        # the other request commits its link between our existence check and our insert
        db_session.add(Customer(stripe_customer_id="cus_race", user_id="u1"))
        db_session.commit()

    fake_stripe.before_create = competing_request
    fake_stripe.next_customer_id = "cus_race"  # same idempotency key, same Stripe customer

    first = ensure_customer_for_user(db_session, fake_stripe, "u1")
    fake_stripe.before_create = None
    second = ensure_customer_for_user(db_session, fake_stripe, "u1")

    assert first == second == "cus_race"
    assert db_session.query(Customer).filter_by(user_id="u1").count() == 1


def test_losing_writer_returns_winning_row(db_session: Session, fake_stripe, user):
    def competing_request():
        db_session.add(Customer(stripe_customer_id="cus_winner", user_id="u1"))
        db_session.commit()

    fake_stripe.before_create = competing_request
    fake_stripe.next_customer_id = "cus_loser"

    assert ensure_customer_for_user(db_session, fake_stripe, "u1") == "cus_winner"
    assert db_session.query(Customer).count() == 1


def test_unknown_user_raises_not_found(db_session: Session, fake_stripe):
    with pytest.raises(NotFound):
        ensure_customer_for_user(db_session, fake_stripe, "ghost")
