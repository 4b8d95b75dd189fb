import json
import stripe
from flask import current_app
from sqlalchemy.exc import OperationalError
from typing import Dict, Any, List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from evently.extensions import db
from evently.exceptions import (
    AlreadyRegistered,
    EventNotFound,
    GatewayUnavailable,
    InvalidRegistrationState,
    InvalidSignature,
    InvalidWebhookPayload,
    PaymentNotRequired,
    ReconciliationTimeout,
    RegistrationNotFound,
    UnknownOrder,
)
from evently.models import Event, Registration
from evently.models.enums import PaymentStatus, RegistrationStatus
from evently.repositories import EventRepository, RegistrationRepository
from evently.services.registration_service import RegistrationService
from evently.utils.email import notify, send_registration_confirmation_email
from evently.utils.identity import Identity
from evently.utils.signatures import (
    compute_signature,
    order_payment_message,
    signatures_match,
)

CHANNEL_VERIFY = "verify"
CHANNEL_WEBHOOK = "webhook"


class PaymentService:
    @staticmethod
    def _ensure_stripe_key():
        """Ensure Stripe API key is set"""
        if not stripe.api_key:
            stripe.api_key = current_app.config.get("STRIPE_SECRET_KEY")
            if not stripe.api_key:
                current_app.logger.error("Stripe API key not configured")
                raise GatewayUnavailable("Payment gateway not configured")

    @staticmethod
    def get_gateway_config() -> Dict[str, str]:
        """Get the gateway publishable key for the checkout frontend"""
        return {
            "publishable_key": current_app.config.get("STRIPE_PUBLISHABLE_KEY", "")
        }

    # Order creation

    @staticmethod
    def start_checkout(event_id: int, identity: Identity) -> Dict[str, Any]:
        """Admit the caller to a paid event and open a gateway order for it.

        Any abandoned pending or cancelled rows the caller left behind for this
        event are purged first, so each attendee has at most one order in flight.
        """
        event = EventRepository.get_event(event_id)
        if not event:
            raise EventNotFound()
        if event.is_free:
            raise PaymentNotRequired()

        existing = RegistrationRepository.find_active(event_id, identity.id)
        if existing and existing.payment_status != PaymentStatus.PENDING:
            raise AlreadyRegistered()

        PaymentService._purge_attendee_leftovers(event_id, identity.id)
        registration = RegistrationService.attempt_register(event_id, identity)
        return PaymentService.create_order(registration.id, identity)

    @staticmethod
    def create_order(registration_id: int, identity: Identity) -> Dict[str, Any]:
        """Create a gateway order for a pending registration.

        A gateway failure leaves the registration pending; calling again reuses
        the same idempotency key, so the gateway hands back the same order.
        """
        registration = RegistrationRepository.find_by_id(registration_id)
        if not registration or registration.attendee_id != identity.id:
            raise RegistrationNotFound()

        event = registration.event
        if event.is_free:
            raise PaymentNotRequired()
        if (
            registration.payment_status != PaymentStatus.PENDING
            or registration.status != RegistrationStatus.REGISTERED
        ):
            raise InvalidRegistrationState()

        PaymentService._purge_attendee_leftovers(
            event.id, identity.id, exclude_id=registration.id
        )

        order = PaymentService._create_gateway_order(registration, event)

        try:
            attached = RegistrationRepository.attach_order(registration.id, order.id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if not attached:
            current_app.logger.warning(
                f"Registration {registration.id} left pending before order {order.id} was recorded"
            )
            raise InvalidRegistrationState()

        current_app.logger.info(
            f"Created order {order.id} for registration {registration.id} "
            f"({registration.payment_amount} {registration.currency})"
        )
        return {
            "order_id": order.id,
            "client_secret": getattr(order, "client_secret", None),
            "amount": registration.payment_amount,
            "currency": registration.currency,
            "key_id": PaymentService.get_gateway_config()["publishable_key"],
            "registration": {
                "id": registration.id,
                "event_id": event.id,
                "event_title": event.title,
            },
        }

    @staticmethod
    def _create_gateway_order(registration: Registration, event: Event):
        PaymentService._ensure_stripe_key()
        try:
            return stripe.PaymentIntent.create(
                amount=registration.payment_amount,
                currency=registration.currency.lower(),
                metadata={
                    "event_id": str(event.id),
                    "attendee_id": str(registration.attendee_id),
                    "registration_id": str(registration.id),
                },
                description=f"Event Registration: {event.title}",
                payment_method_types=["card"],
                idempotency_key=f"receipt_{registration.id}",
            )
        except stripe.StripeError as e:
            current_app.logger.error(
                f"Stripe error creating order for registration {registration.id}: {str(e)}"
            )
            raise GatewayUnavailable()

    @staticmethod
    def _purge_attendee_leftovers(
        event_id: int, attendee_id: int, exclude_id: Optional[int] = None
    ) -> int:
        try:
            purged = RegistrationRepository.purge_stale_for_attendee(
                event_id, attendee_id, exclude_id=exclude_id
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if purged:
            current_app.logger.info(
                f"Purged {purged} stale registration(s) for attendee {attendee_id}, event {event_id}"
            )
        return purged

    # Confirmation

    @staticmethod
    def verify_synchronous(
        order_id: str, payment_id: str, signature: str, registration_id: int
    ) -> Tuple[Registration, bool]:
        """Confirm a payment reported by the client after checkout."""
        secret = current_app.config.get("PAYMENT_GATEWAY_SECRET")
        if not secret:
            current_app.logger.error("Payment gateway secret not configured")
            raise GatewayUnavailable("Payment verification not configured")

        if not (isinstance(order_id, str) and isinstance(payment_id, str)):
            raise InvalidSignature()
        if not order_id or not payment_id:
            raise InvalidSignature()
        expected = compute_signature(secret, order_payment_message(order_id, payment_id))
        if not signatures_match(expected, signature):
            current_app.logger.error(
                f"Invalid payment signature for order {order_id}, registration {registration_id}"
            )
            raise InvalidSignature()

        registration = RegistrationRepository.find_by_id(registration_id)
        if not registration or registration.external_order_id != order_id:
            current_app.logger.error(
                f"Verified payment {payment_id} does not match registration {registration_id}"
            )
            raise UnknownOrder()

        return PaymentService.confirm_payment(
            registration,
            payment_id,
            CHANNEL_VERIFY,
            lock_timeout=current_app.config.get("VERIFY_TIMEOUT_SECONDS"),
        )

    @staticmethod
    def handle_webhook(raw_body: bytes, signature: str) -> Dict[str, Any]:
        """Handle a gateway webhook delivery.

        The signature is checked over the exact bytes received; the body is only
        parsed once it is known to be authentic.
        """
        secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
        if not secret:
            current_app.logger.error("Payment webhook secret not configured")
            raise GatewayUnavailable("Webhook secret not configured")

        expected = compute_signature(secret, raw_body)
        if not signatures_match(expected, signature):
            current_app.logger.error("Invalid webhook signature")
            raise InvalidSignature()

        try:
            body = json.loads(raw_body)
        except ValueError as e:
            current_app.logger.error(f"Invalid webhook payload: {str(e)}")
            raise InvalidWebhookPayload()
        if not isinstance(body, dict):
            raise InvalidWebhookPayload()

        event_type = body.get("event")
        payment = body
        for key in ("payload", "payment", "entity"):
            payment = payment.get(key) if isinstance(payment, dict) else None
        if not isinstance(payment, dict):
            payment = {}
        current_app.logger.info(
            f"Received webhook {event_type} for order {payment.get('order_id')}"
        )

        if event_type == "payment.captured":
            return PaymentService._handle_payment_captured(payment)
        elif event_type == "payment.failed":
            return PaymentService._handle_payment_failed(payment)

        current_app.logger.info(f"Unhandled webhook event type: {event_type}")
        return {"status": "ok", "handled": False}

    @staticmethod
    def _handle_payment_captured(payment: Dict[str, Any]) -> Dict[str, Any]:
        order_id = payment.get("order_id")
        payment_id = payment.get("id")
        if not order_id or not payment_id:
            raise InvalidWebhookPayload("Captured payment is missing order or payment id")

        registration = RegistrationRepository.find_by_external_order_id(order_id)
        if not registration:
            current_app.logger.error(f"Captured payment {payment_id} for unknown order {order_id}")
            raise UnknownOrder()

        registration, transitioned = PaymentService.confirm_payment(
            registration, payment_id, CHANNEL_WEBHOOK
        )
        return {
            "status": "ok",
            "handled": True,
            "registration_id": registration.id,
            "transitioned": transitioned,
        }

    @staticmethod
    def _handle_payment_failed(payment: Dict[str, Any]) -> Dict[str, Any]:
        # No transition: the order can still be captured by a later attempt.
        order_id = payment.get("order_id")
        registration = (
            RegistrationRepository.find_by_external_order_id(order_id) if order_id else None
        )
        if registration:
            current_app.logger.warning(
                f"Payment failed for registration {registration.id} (order {order_id}); "
                f"leaving it {registration.payment_status.value}"
            )
        else:
            current_app.logger.info(f"Payment failed for unknown order {order_id}")
        return {"status": "ok", "handled": True}

    @staticmethod
    def confirm_payment(
        registration: Registration,
        payment_id: str,
        channel: str,
        lock_timeout: Optional[float] = None,
    ) -> Tuple[Registration, bool]:
        """Apply a confirmed payment to a registration, exactly once.

        Both confirmation channels end up here. Only the caller whose
        conditional update moves the row out of pending increments the ledger;
        every other delivery for the same registration is a no-op.
        """
        if registration.payment_status == PaymentStatus.COMPLETED:
            current_app.logger.info(
                f"Duplicate {channel} confirmation for registration {registration.id}; already completed"
            )
            return registration, False

        try:
            if lock_timeout:
                EventRepository.apply_lock_timeout(lock_timeout)
            won = RegistrationRepository.mark_completed(registration.id, payment_id)
            if won:
                EventRepository.increment(registration.event_id)
            db.session.commit()
        except OperationalError as e:
            db.session.rollback()
            current_app.logger.error(
                f"Store unavailable confirming registration {registration.id} via {channel}: {str(e)}"
            )
            raise ReconciliationTimeout()
        except Exception:
            db.session.rollback()
            raise

        registration = RegistrationRepository.refresh(registration.id)
        if won:
            current_app.logger.info(
                f"Payment {payment_id} completed registration {registration.id} via {channel}"
            )
            notify(send_registration_confirmation_email, registration, registration.event)
        elif registration.payment_status == PaymentStatus.COMPLETED:
            current_app.logger.info(
                f"Registration {registration.id} was completed by the other channel first"
            )
        else:
            current_app.logger.warning(
                f"Payment {payment_id} for registration {registration.id} not applied: "
                f"status={registration.status.value}, payment={registration.payment_status.value}"
            )
        return registration, won

    # Housekeeping

    @staticmethod
    def cancel_pending_payment(registration_id: int, identity: Identity) -> None:
        try:
            deleted = RegistrationRepository.delete_pending(registration_id, identity.id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if not deleted:
            raise RegistrationNotFound("Pending payment not found")
        current_app.logger.info(f"Attendee {identity.id} abandoned pending registration {registration_id}")

    @staticmethod
    def payment_history(identity: Identity) -> List[Registration]:
        return RegistrationRepository.list_completed_payments(identity.id)

    @staticmethod
    def purge_expired_holds(now: Optional[datetime] = None) -> int:
        """Delete pending registrations older than the payment hold TTL."""
        now = now or datetime.now(timezone.utc)
        ttl = timedelta(minutes=current_app.config.get("PAYMENT_HOLD_TTL_MINUTES", 30))
        try:
            purged = RegistrationRepository.purge_expired_pending(now - ttl)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.info(f"Purged {purged} expired pending registration(s)")
        return purged
