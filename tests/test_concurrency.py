"""
Race condition tests for concurrent admissions and confirmations.

Every worker runs in its own app context, and so its own database session and
connection, against the shared file database.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from evently.exceptions import AlreadyRegistered, EventFull
from evently.extensions import db
from evently.models import Event, Registration
from evently.models.enums import PaymentStatus, RegistrationStatus
from evently.services.ledger_audit_service import LedgerAuditService
from evently.services.payment_service import PaymentService
from evently.services.registration_service import RegistrationService


def run_concurrently(app, calls):
    """Run each callable in its own thread and app context, released together."""
    barrier = threading.Barrier(len(calls))

    def worker(call):
        with app.app_context():
            barrier.wait(timeout=10)
            try:
                return call()
            except (EventFull, AlreadyRegistered) as e:
                return e.code

    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        return list(executor.map(worker, calls))


def reload(event_id):
    db.session.expire_all()
    return db.session.get(Event, event_id)


@pytest.mark.race
class TestConcurrentAdmission:
    def test_free_event_never_overbooks(self, app, make_event, attendee):
        event_id = make_event(max_attendees=5).id

        def register(attendee_id):
            return lambda: RegistrationService.attempt_register(
                event_id, attendee(attendee_id)
            ).id

        results = run_concurrently(app, [register(i) for i in range(1, 21)])

        admitted = [r for r in results if isinstance(r, int)]
        assert len(admitted) == 5
        assert results.count("EVENT_FULL") == 15
        event = reload(event_id)
        assert event.current_attendees == 5
        assert Registration.query.filter_by(
            event_id=event_id, status=RegistrationStatus.REGISTERED
        ).count() == 5
        assert LedgerAuditService.audit_event(event_id)["corrected"] is False

    def test_same_attendee_admitted_once(self, app, make_event, attendee):
        event_id = make_event(max_attendees=None).id

        results = run_concurrently(
            app,
            [lambda: RegistrationService.attempt_register(event_id, attendee(1)).id] * 8,
        )

        assert len([r for r in results if isinstance(r, int)]) == 1
        assert results.count("ALREADY_REGISTERED") == 7
        assert reload(event_id).current_attendees == 1

    def test_last_paid_seat_has_one_winner(self, app, make_event, checkout, webhook, attendee):
        event_id = make_event(max_attendees=1, price=500).id

        results = run_concurrently(
            app,
            [lambda: checkout(event_id, 1), lambda: checkout(event_id, 2)],
        )

        orders = [r for r in results if isinstance(r, dict)]
        assert len(orders) == 1
        assert results.count("EVENT_FULL") == 1
        pending = Registration.query.filter_by(
            event_id=event_id, payment_status=PaymentStatus.PENDING
        ).all()
        assert len(pending) == 1
        assert reload(event_id).current_attendees == 0

        order = orders[0]
        result = PaymentService.handle_webhook(
            *webhook("payment.captured", order["order_id"], "pay_win")
        )
        assert result["transitioned"] is True
        assert result["registration_id"] == order["registration"]["id"]
        assert reload(event_id).current_attendees == 1

        with pytest.raises(EventFull):
            RegistrationService.attempt_register(event_id, attendee(3))

        assert reload(event_id).current_attendees == 1
        assert LedgerAuditService.audit_event(event_id)["corrected"] is False


@pytest.mark.race
class TestConcurrentConfirmation:
    def test_verify_and_webhook_race(self, app, make_event, checkout, signer, webhook):
        event_id = make_event(price=500).id
        order = checkout(event_id, 1)
        registration_id = order["registration"]["id"]
        body, webhook_signature = webhook("payment.captured", order["order_id"], "pay_1")

        def verify():
            return PaymentService.verify_synchronous(
                order["order_id"], "pay_1", signer(order["order_id"], "pay_1"),
                registration_id,
            )[1]

        def deliver():
            return PaymentService.handle_webhook(body, webhook_signature)["transitioned"]

        results = run_concurrently(app, [verify, deliver])

        assert sorted(results) == [False, True]
        assert reload(event_id).current_attendees == 1
        db.session.expire_all()
        registration = db.session.get(Registration, registration_id)
        assert registration.payment_status == PaymentStatus.COMPLETED

    def test_webhook_redelivery_storm(self, app, make_event, checkout, webhook):
        event_id = make_event(price=500).id
        order = checkout(event_id, 1)
        body, signature = webhook("payment.captured", order["order_id"], "pay_1")

        results = run_concurrently(
            app,
            [lambda: PaymentService.handle_webhook(body, signature)["transitioned"]] * 6,
        )

        assert results.count(True) == 1
        assert reload(event_id).current_attendees == 1
