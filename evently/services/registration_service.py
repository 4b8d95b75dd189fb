from typing import List, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError
from evently.extensions import db
from evently.exceptions import (
    AlreadyRegistered,
    EventFull,
    EventNotAcceptingRegistrations,
    EventNotFound,
    RegistrationNotCancellable,
    RegistrationNotFound,
    UnauthorizedError,
)
from evently.models import Registration
from evently.models.enums import (
    SETTLED_PAYMENT_STATUSES,
    EventStatus,
    PaymentStatus,
    RegistrationStatus,
)
from evently.repositories import EventRepository, RegistrationRepository
from evently.utils.email import (
    notify,
    send_cancellation_email,
    send_registration_confirmation_email,
)
from evently.utils.identity import Identity


class RegistrationService:
    @staticmethod
    def attempt_register(event_id: int, identity: Identity) -> Registration:
        """Admit an attendee to an event or raise the specific reason not to.

        Free events are settled immediately and counted in the ledger within
        the same transaction. Paid events get a pending registration that holds
        a seat until the payment is confirmed or the hold is purged.
        """
        current_app.logger.info(
            f"Registration attempt: attendee {identity.id} for event {event_id}"
        )

        event = EventRepository.get_event(event_id)
        if not event:
            raise EventNotFound()
        if event.status != EventStatus.PUBLISHED:
            raise EventNotAcceptingRegistrations()

        try:
            event = EventRepository.lock_for_admission(event_id)
            if event is None:
                raise EventNotFound()
            if event.status != EventStatus.PUBLISHED:
                raise EventNotAcceptingRegistrations()

            if RegistrationRepository.find_active(event_id, identity.id):
                current_app.logger.warning(
                    f"Attendee {identity.id} already registered for event {event_id}"
                )
                raise AlreadyRegistered()

            if event.max_attendees is not None:
                holds = RegistrationRepository.count_pending_holds(event_id)
                if event.current_attendees + holds >= event.max_attendees:
                    current_app.logger.info(
                        f"Event {event_id} full: settled={event.current_attendees}, "
                        f"pending={holds}, max={event.max_attendees}"
                    )
                    raise EventFull()

            attrs = {
                "event_id": event_id,
                "attendee_id": identity.id,
                "status": RegistrationStatus.REGISTERED,
                "currency": event.currency,
                "attendee_email": identity.email,
                "attendee_name": identity.name,
            }
            if event.is_free:
                registration = RegistrationRepository.create(
                    dict(attrs, payment_status=PaymentStatus.FREE, payment_amount=0)
                )
                if not EventRepository.increment_guarded(event_id):
                    raise EventFull()
            else:
                registration = RegistrationRepository.create(
                    dict(
                        attrs,
                        payment_status=PaymentStatus.PENDING,
                        payment_amount=event.price,
                    )
                )

            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.warning(
                f"Concurrent duplicate registration for attendee {identity.id}, event {event_id}"
            )
            raise AlreadyRegistered()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Registered attendee {identity.id} for event {event_id} "
            f"(registration {registration.id}, payment {registration.payment_status.value})"
        )
        if registration.payment_status == PaymentStatus.FREE:
            notify(send_registration_confirmation_email, registration, event)
        return registration

    @staticmethod
    def cancel(registration_id: int, identity: Identity) -> Registration:
        registration = RegistrationRepository.find_by_id(registration_id)
        if not registration or (
            registration.attendee_id != identity.id and not identity.is_admin
        ):
            raise RegistrationNotFound()
        if registration.status != RegistrationStatus.REGISTERED:
            raise RegistrationNotCancellable()

        try:
            # The payment status comes back from the same UPDATE, so a
            # confirmation racing this cancel is either fully seen or not at all.
            payment_status = RegistrationRepository.mark_cancelled(registration_id)
            if payment_status is None:
                raise RegistrationNotCancellable()
            if payment_status in SETTLED_PAYMENT_STATUSES:
                EventRepository.decrement_clamped(registration.event_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        registration = RegistrationRepository.refresh(registration_id)
        current_app.logger.info(
            f"Cancelled registration {registration_id} for event {registration.event_id}"
        )
        notify(send_cancellation_email, registration, registration.event)
        return registration

    @staticmethod
    def cancel_for_event(event_id: int, identity: Identity) -> Registration:
        registration = RegistrationRepository.find_active(event_id, identity.id)
        if not registration:
            raise RegistrationNotFound()
        return RegistrationService.cancel(registration.id, identity)

    @staticmethod
    def my_registrations(
        identity: Identity,
        status: Optional[RegistrationStatus] = RegistrationStatus.REGISTERED,
    ) -> List[Registration]:
        return RegistrationRepository.list_for_attendee(identity.id, status)

    @staticmethod
    def event_registrations(
        event_id: int, identity: Identity, status: Optional[RegistrationStatus] = None
    ) -> List[Registration]:
        event = EventRepository.get_event(event_id)
        if not event:
            raise EventNotFound()
        if event.organizer_id != identity.id and not identity.is_admin:
            raise UnauthorizedError(
                "Only the event organizer can view registrations"
            )
        return RegistrationRepository.list_for_event(event_id, status)
