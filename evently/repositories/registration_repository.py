from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import delete, or_, update
from evently.extensions import db
from evently.models import Registration
from evently.models.enums import (
    ACTIVE_STATUSES,
    SETTLED_PAYMENT_STATUSES,
    PaymentStatus,
    RegistrationStatus,
)


class RegistrationRepository:
    @staticmethod
    def find_by_id(registration_id: int) -> Optional[Registration]:
        return Registration.query.filter_by(id=registration_id).first()

    @staticmethod
    def refresh(registration_id: int) -> Optional[Registration]:
        """Re-read a registration, discarding whatever the session cached."""
        return (
            Registration.query.filter_by(id=registration_id)
            .populate_existing()
            .first()
        )

    @staticmethod
    def find_by_external_order_id(order_id: str) -> Optional[Registration]:
        return (
            Registration.query.filter_by(external_order_id=order_id)
            .order_by(Registration.id.desc())
            .first()
        )

    @staticmethod
    def find_active(event_id: int, attendee_id: int) -> Optional[Registration]:
        return Registration.query.filter(
            Registration.event_id == event_id,
            Registration.attendee_id == attendee_id,
            Registration.status.in_(ACTIVE_STATUSES),
        ).first()

    @staticmethod
    def count_settled(event_id: int) -> int:
        """Count the registrations the attendee ledger is supposed to reflect."""
        return Registration.query.filter(
            Registration.event_id == event_id,
            Registration.status.in_(ACTIVE_STATUSES),
            Registration.payment_status.in_(SETTLED_PAYMENT_STATUSES),
        ).count()

    @staticmethod
    def count_pending_holds(event_id: int) -> int:
        """Count paid registrations still waiting for their payment."""
        return Registration.query.filter(
            Registration.event_id == event_id,
            Registration.status == RegistrationStatus.REGISTERED,
            Registration.payment_status == PaymentStatus.PENDING,
        ).count()

    @staticmethod
    def create(attrs) -> Registration:
        registration = Registration(**attrs)
        db.session.add(registration)
        db.session.flush()
        return registration

    @staticmethod
    def attach_order(registration_id: int, order_id: str) -> bool:
        result = db.session.execute(
            update(Registration)
            .where(
                Registration.id == registration_id,
                Registration.payment_status == PaymentStatus.PENDING,
            )
            .values(external_order_id=order_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def mark_completed(registration_id: int, payment_id: str) -> bool:
        """Move a pending registration to completed.

        Test-and-set on the current payment status: only one caller can ever
        see a rowcount of one for a given registration.
        """
        result = db.session.execute(
            update(Registration)
            .where(
                Registration.id == registration_id,
                Registration.payment_status == PaymentStatus.PENDING,
                Registration.status == RegistrationStatus.REGISTERED,
            )
            .values(
                payment_status=PaymentStatus.COMPLETED,
                status=RegistrationStatus.REGISTERED,
                external_payment_id=payment_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def mark_cancelled(registration_id: int) -> Optional[PaymentStatus]:
        """Cancel a registered row; returns its payment status, or None on a miss."""
        return db.session.execute(
            update(Registration)
            .where(
                Registration.id == registration_id,
                Registration.status == RegistrationStatus.REGISTERED,
            )
            .values(
                status=RegistrationStatus.CANCELLED,
                cancelled_at=datetime.now(timezone.utc),
            )
            .returning(Registration.payment_status)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

    @staticmethod
    def delete_pending(registration_id: int, attendee_id: int) -> bool:
        result = db.session.execute(
            delete(Registration)
            .where(
                Registration.id == registration_id,
                Registration.attendee_id == attendee_id,
                Registration.payment_status == PaymentStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def purge_stale_for_attendee(
        event_id: int, attendee_id: int, exclude_id: Optional[int] = None
    ) -> int:
        """Delete an attendee's abandoned pending and cancelled rows for an event."""
        statement = delete(Registration).where(
            Registration.event_id == event_id,
            Registration.attendee_id == attendee_id,
            or_(
                Registration.payment_status == PaymentStatus.PENDING,
                Registration.status == RegistrationStatus.CANCELLED,
            ),
        )
        if exclude_id is not None:
            statement = statement.where(Registration.id != exclude_id)
        result = db.session.execute(
            statement.execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def purge_expired_pending(cutoff: datetime) -> int:
        result = db.session.execute(
            delete(Registration)
            .where(
                Registration.payment_status == PaymentStatus.PENDING,
                Registration.registered_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def list_for_attendee(
        attendee_id: int, status: Optional[RegistrationStatus] = None
    ) -> List[Registration]:
        query = Registration.query.filter(Registration.attendee_id == attendee_id)
        if status is not None:
            query = query.filter(Registration.status == status)
        return query.order_by(Registration.registered_at.desc(), Registration.id.desc()).all()

    @staticmethod
    def list_for_event(
        event_id: int, status: Optional[RegistrationStatus] = None
    ) -> List[Registration]:
        query = Registration.query.filter(Registration.event_id == event_id)
        if status is not None:
            query = query.filter(Registration.status == status)
        return query.order_by(Registration.registered_at.desc(), Registration.id.desc()).all()

    @staticmethod
    def list_completed_payments(attendee_id: int) -> List[Registration]:
        return (
            Registration.query.filter(
                Registration.attendee_id == attendee_id,
                Registration.payment_status == PaymentStatus.COMPLETED,
            )
            .order_by(Registration.registered_at.desc(), Registration.id.desc())
            .all()
        )
