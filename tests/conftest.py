"""
Pytest configuration and fixtures.
"""
import json
from unittest.mock import MagicMock, patch

import pytest
from flask_jwt_extended import create_access_token

from evently import create_app
from evently.extensions import db
from evently.models import Event
from evently.models.enums import EventStatus, UserRole
from evently.services.payment_service import PaymentService
from evently.utils.identity import Identity
from evently.utils.signatures import compute_signature, order_payment_message

GATEWAY_SECRET = "test_gateway_secret"
WEBHOOK_SECRET = "test_webhook_secret"
ORGANIZER_ID = 900


@pytest.fixture
def app(tmp_path):
    """Create an app backed by a file SQLite database shared across threads."""
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'evently_test.db'}",
            "JWT_SECRET_KEY": "test-jwt-secret",
            "STRIPE_SECRET_KEY": "sk_test_fake_key_for_testing",
            "STRIPE_PUBLISHABLE_KEY": "pk_test_fake_key_for_testing",
            "PAYMENT_GATEWAY_SECRET": GATEWAY_SECRET,
            "PAYMENT_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "RATELIMIT_ENABLED": False,
        }
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    """Build bearer headers for a caller with the given id and role."""

    def _headers(user_id, role="attendee"):
        token = create_access_token(
            identity=str(user_id),
            additional_claims={
                "role": role,
                "email": f"user{user_id}@example.com",
                "name": f"User {user_id}",
            },
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_event(app):
    """Create and commit an event; published, free and capped at 10 by default."""

    def _make(**overrides):
        attrs = {
            "organizer_id": ORGANIZER_ID,
            "title": "Launch Party",
            "status": EventStatus.PUBLISHED,
            "max_attendees": 10,
            "price": 0,
            "currency": "USD",
        }
        attrs.update(overrides)
        event = Event(**attrs)
        db.session.add(event)
        db.session.commit()
        return event

    return _make


@pytest.fixture
def attendee():
    def _attendee(attendee_id, role="attendee"):
        return Identity(
            id=attendee_id,
            role=UserRole(role),
            email=f"user{attendee_id}@example.com",
            name=f"User {attendee_id}",
        )

    return _attendee


@pytest.fixture
def mock_gateway():
    """Patch Stripe order creation; each registration gets its own order id."""

    def _create(**kwargs):
        intent = MagicMock()
        intent.id = f"pi_test_{kwargs['metadata']['registration_id']}"
        intent.client_secret = f"{intent.id}_secret"
        return intent

    with patch("stripe.PaymentIntent.create", side_effect=_create) as create:
        yield create


@pytest.fixture
def checkout(app, mock_gateway, attendee):
    """Hold a seat on a paid event and return the created order."""

    def _checkout(event_id, attendee_id):
        return PaymentService.start_checkout(event_id, attendee(attendee_id))

    return _checkout


def sign_payment(order_id, payment_id, secret=GATEWAY_SECRET):
    return compute_signature(secret, order_payment_message(order_id, payment_id))


def webhook_delivery(event_type, order_id, payment_id, secret=WEBHOOK_SECRET):
    """Return the raw body and its signature for a webhook delivery."""
    body = json.dumps(
        {
            "event": event_type,
            "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id}}},
        }
    ).encode("utf-8")
    return body, compute_signature(secret, body)


@pytest.fixture
def signer():
    return sign_payment


@pytest.fixture
def webhook():
    return webhook_delivery
