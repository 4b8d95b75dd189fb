"""
Drift auditor tests: the ledger is recomputed from settled registrations.
"""
import pytest

from evently.exceptions import EventNotFound
from evently.extensions import db
from evently.models import Event
from evently.services.ledger_audit_service import LedgerAuditService
from evently.services.payment_service import PaymentService
from evently.services.registration_service import RegistrationService


def corrupt_ledger(event_id, value):
    db.session.get(Event, event_id).current_attendees = value
    db.session.commit()


def reload(event_id):
    db.session.expire_all()
    return db.session.get(Event, event_id)


class TestAuditEvent:
    def test_consistent_ledger_is_left_alone(self, make_event, attendee):
        event = make_event()
        RegistrationService.attempt_register(event.id, attendee(1))
        RegistrationService.attempt_register(event.id, attendee(2))

        result = LedgerAuditService.audit_event(event.id)

        assert result == {
            "event_id": event.id,
            "previous": 2,
            "recomputed": 2,
            "corrected": False,
        }

    def test_drifted_ledger_is_overwritten(self, make_event, attendee):
        event = make_event()
        RegistrationService.attempt_register(event.id, attendee(1))
        corrupt_ledger(event.id, 7)

        result = LedgerAuditService.audit_event(event.id)

        assert result["previous"] == 7
        assert result["recomputed"] == 1
        assert result["corrected"] is True
        assert reload(event.id).current_attendees == 1

    def test_second_audit_finds_nothing(self, make_event, attendee):
        event = make_event()
        RegistrationService.attempt_register(event.id, attendee(1))
        corrupt_ledger(event.id, 0)

        assert LedgerAuditService.audit_event(event.id)["corrected"] is True
        assert LedgerAuditService.audit_event(event.id)["corrected"] is False

    def test_recount_ignores_pending_and_cancelled(
        self, make_event, attendee, checkout, signer
    ):
        free = make_event()
        RegistrationService.attempt_register(free.id, attendee(1))
        dropped = RegistrationService.attempt_register(free.id, attendee(2))
        RegistrationService.cancel(dropped.id, attendee(2))

        paid = make_event(price=500)
        order = checkout(paid.id, 3)
        checkout(paid.id, 4)
        PaymentService.verify_synchronous(
            order["order_id"], "pay_3", signer(order["order_id"], "pay_3"),
            order["registration"]["id"],
        )
        corrupt_ledger(free.id, 5)
        corrupt_ledger(paid.id, 5)

        assert LedgerAuditService.audit_event(free.id)["recomputed"] == 1
        assert LedgerAuditService.audit_event(paid.id)["recomputed"] == 1

    def test_mixed_paid_sequence_leaves_nothing_to_correct(
        self, make_event, attendee, checkout, signer, webhook
    ):
        event = make_event(price=500, max_attendees=4)
        first = checkout(event.id, 1)
        second = checkout(event.id, 2)
        third = checkout(event.id, 3)
        fourth = checkout(event.id, 4)

        PaymentService.handle_webhook(*webhook("payment.captured", first["order_id"], "pay_1"))
        PaymentService.verify_synchronous(
            second["order_id"], "pay_2", signer(second["order_id"], "pay_2"),
            second["registration"]["id"],
        )
        PaymentService.handle_webhook(*webhook("payment.captured", second["order_id"], "pay_2"))
        assert reload(event.id).current_attendees == 2

        RegistrationService.cancel(second["registration"]["id"], attendee(2))
        RegistrationService.cancel(third["registration"]["id"], attendee(3))
        PaymentService.cancel_pending_payment(fourth["registration"]["id"], attendee(4))
        assert reload(event.id).current_attendees == 1

        again = checkout(event.id, 3)
        PaymentService.handle_webhook(*webhook("payment.captured", again["order_id"], "pay_3"))

        result = LedgerAuditService.audit_event(event.id)

        assert result == {
            "event_id": event.id,
            "previous": 2,
            "recomputed": 2,
            "corrected": False,
        }
        assert reload(event.id).ledger_needs_audit is False

    def test_audit_clears_underflow_flag(self, make_event, attendee):
        event = make_event()
        registration = RegistrationService.attempt_register(event.id, attendee(1))
        corrupt_ledger(event.id, 0)
        RegistrationService.cancel(registration.id, attendee(1))
        assert reload(event.id).ledger_needs_audit is True

        result = LedgerAuditService.audit_event(event.id)

        assert result["recomputed"] == 0
        assert reload(event.id).ledger_needs_audit is False

    def test_missing_event(self, app):
        with pytest.raises(EventNotFound):
            LedgerAuditService.audit_event(31337)


class TestAuditAllEvents:
    def test_audits_every_event(self, make_event, attendee):
        first = make_event(title="First")
        second = make_event(title="Second")
        RegistrationService.attempt_register(first.id, attendee(1))
        corrupt_ledger(second.id, 3)

        results = LedgerAuditService.audit_all_events()

        by_event = {result["event_id"]: result for result in results}
        assert by_event[first.id]["corrected"] is False
        assert by_event[second.id]["corrected"] is True
        assert reload(second.id).current_attendees == 0

    def test_only_flagged(self, make_event, attendee):
        flagged = make_event(title="Flagged")
        make_event(title="Clean")
        registration = RegistrationService.attempt_register(flagged.id, attendee(1))
        corrupt_ledger(flagged.id, 0)
        RegistrationService.cancel(registration.id, attendee(1))

        results = LedgerAuditService.audit_all_events(only_flagged=True)

        assert [result["event_id"] for result in results] == [flagged.id]
        assert LedgerAuditService.audit_all_events(only_flagged=True) == []


class TestCommands:
    def test_audit_ledger_command(self, app, make_event):
        event = make_event()
        corrupt_ledger(event.id, 4)

        result = app.test_cli_runner().invoke(args=["audit-ledger"])

        assert result.exit_code == 0
        assert f"Event {event.id}: 4 -> 0" in result.output
        assert "corrected 1" in result.output
        assert reload(event.id).current_attendees == 0

    def test_purge_pending_command(self, app, make_event, checkout):
        event = make_event(price=500)
        checkout(event.id, 1)
        app.config["PAYMENT_HOLD_TTL_MINUTES"] = 0

        result = app.test_cli_runner().invoke(args=["purge-pending"])

        assert result.exit_code == 0
        assert "Purged 1 expired pending registration(s)." in result.output
