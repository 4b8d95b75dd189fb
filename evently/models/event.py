from evently.extensions import db
from .enums import EventStatus, enum_values


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    organizer_id = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    status = db.Column(
        db.Enum(
            EventStatus,
            name="event_status",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=EventStatus.DRAFT,
    )
    max_attendees = db.Column(db.Integer, nullable=True)  # None means unlimited
    current_attendees = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Integer, nullable=False, default=0)  # Minor currency units
    currency = db.Column(db.String(3), nullable=False, default="USD")
    ledger_version = db.Column(db.Integer, nullable=False, default=0)
    ledger_needs_audit = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.TIMESTAMP(timezone=True), nullable=False, server_default=db.func.now()
    )
    updated_at = db.Column(
        db.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.CheckConstraint("current_attendees >= 0", name="ck_events_current_attendees"),
        db.CheckConstraint("price >= 0", name="ck_events_price"),
    )

    @property
    def is_free(self):
        return not self.price

    @property
    def is_full(self):
        if self.max_attendees is None:
            return False
        return self.current_attendees >= self.max_attendees

    def to_dict(self):
        return {
            "id": self.id,
            "organizer_id": self.organizer_id,
            "title": self.title,
            "status": self.status.value if self.status else None,
            "max_attendees": self.max_attendees,
            "current_attendees": self.current_attendees,
            "price": self.price,
            "currency": self.currency,
            "is_full": self.is_full,
        }

    def __repr__(self):
        return (
            f"Event("
            f"id={self.id}, "
            f"status={self.status}, "
            f"current_attendees={self.current_attendees}, "
            f"max_attendees={self.max_attendees}, "
            f"price={self.price}"
            f")"
        )
