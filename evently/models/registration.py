from evently.extensions import db
from .enums import (
    ACTIVE_STATUSES,
    SETTLED_PAYMENT_STATUSES,
    PaymentStatus,
    RegistrationStatus,
    enum_values,
)

_ACTIVE_FILTER = db.text("status IN ('registered', 'attended', 'no-show')")


class Registration(db.Model):
    __tablename__ = "registrations"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    attendee_id = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum(
            RegistrationStatus,
            name="registration_status",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=RegistrationStatus.REGISTERED,
    )
    payment_status = db.Column(
        db.Enum(
            PaymentStatus,
            name="payment_status",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=PaymentStatus.FREE,
    )
    payment_amount = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    external_order_id = db.Column(db.String(255), nullable=True, index=True)
    external_payment_id = db.Column(db.String(255), nullable=True)
    attendee_email = db.Column(db.String(255), nullable=True)
    attendee_name = db.Column(db.String(255), nullable=True)
    registered_at = db.Column(
        db.TIMESTAMP(timezone=True), nullable=False, server_default=db.func.now()
    )
    cancelled_at = db.Column(db.TIMESTAMP(timezone=True), nullable=True)
    updated_at = db.Column(
        db.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    event = db.relationship(
        "Event", backref=db.backref("registrations", lazy="dynamic")
    )

    # Cancelled rows stay behind as history, so the pair is only unique
    # among active registrations.
    __table_args__ = (
        db.Index(
            "uq_registrations_active_attendee",
            "event_id",
            "attendee_id",
            unique=True,
            postgresql_where=_ACTIVE_FILTER,
            sqlite_where=_ACTIVE_FILTER,
        ),
        db.Index("ix_registrations_attendee_status", "attendee_id", "status"),
        db.Index("ix_registrations_event_status", "event_id", "status"),
        # Ids feed the gateway idempotency key and must never be reused.
        {"sqlite_autoincrement": True},
    )

    @property
    def is_active(self):
        return self.status in ACTIVE_STATUSES

    @property
    def counts_toward_ledger(self):
        return self.is_active and self.payment_status in SETTLED_PAYMENT_STATUSES

    def to_dict(self, include_event=False):
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "attendee_id": self.attendee_id,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "payment_amount": self.payment_amount,
            "currency": self.currency,
            "external_order_id": self.external_order_id,
            "external_payment_id": self.external_payment_id,
            "registered_at": (
                self.registered_at.isoformat() if self.registered_at else None
            ),
            "cancelled_at": (
                self.cancelled_at.isoformat() if self.cancelled_at else None
            ),
            "is_active": self.is_active,
        }
        if include_event and self.event is not None:
            data["event"] = self.event.to_dict()
        return data

    def __repr__(self):
        return (
            f"Registration("
            f"id={self.id}, "
            f"event_id={self.event_id}, "
            f"attendee_id={self.attendee_id}, "
            f"status={self.status}, "
            f"payment_status={self.payment_status}, "
            f"external_order_id={self.external_order_id}"
            f")"
        )
