from flask import current_app
from sqlalchemy import or_, text, update
from evently.extensions import db
from evently.models import Event


class EventRepository:
    """Event reads and the writes that maintain the attendee ledger.

    None of these methods commit; the calling service owns the transaction so
    that a ledger write and its registration write land together.
    """

    @staticmethod
    def get_event(event_id: int) -> Event:
        return Event.query.filter_by(id=event_id).first()

    @staticmethod
    def get_events(only_flagged: bool = False):
        query = Event.query
        if only_flagged:
            query = query.filter(Event.ledger_needs_audit.is_(True))
        return query.order_by(Event.id).all()

    @staticmethod
    def lock_for_admission(event_id: int) -> Event:
        """Serialize admission and ledger work for one event.

        The version bump is a write, so it takes the row lock on PostgreSQL and
        the database write lock on SQLite; everything read after it in the same
        transaction is stable until commit.
        """
        result = db.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(ledger_version=Event.ledger_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return (
            Event.query.filter_by(id=event_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    @staticmethod
    def increment_guarded(event_id: int) -> bool:
        """Add one attendee unless the event is already at capacity."""
        result = db.session.execute(
            update(Event)
            .where(
                Event.id == event_id,
                or_(
                    Event.max_attendees.is_(None),
                    Event.current_attendees < Event.max_attendees,
                ),
            )
            .values(current_attendees=Event.current_attendees + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def increment(event_id: int) -> None:
        """Add one attendee whose seat was already held at admission."""
        db.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(current_attendees=Event.current_attendees + 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def decrement_clamped(event_id: int) -> bool:
        """Remove one attendee, never taking the ledger below zero.

        A miss means the ledger already disagrees with the registrations, so
        the event is flagged for the ledger audit instead of failing the caller.
        """
        result = db.session.execute(
            update(Event)
            .where(Event.id == event_id, Event.current_attendees > 0)
            .values(current_attendees=Event.current_attendees - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return True

        current_app.logger.warning(
            f"Ledger underflow prevented for event {event_id}; flagging for audit"
        )
        EventRepository.flag_for_audit(event_id)
        return False

    @staticmethod
    def flag_for_audit(event_id: int) -> None:
        db.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(ledger_needs_audit=True)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def overwrite_ledger(event_id: int, value: int) -> None:
        db.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(current_attendees=value, ledger_needs_audit=False)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def apply_lock_timeout(seconds: float) -> None:
        """Bound how long the current transaction waits on row locks.

        SQLite has no per-transaction lock timeout, so the busy timeout of the
        connection the session holds is lowered instead. It is set back to the
        engine default the next time the pool hands that connection out.
        """
        dialect = db.session.get_bind().dialect.name
        milliseconds = max(int(seconds * 1000), 1)
        if dialect == "postgresql":
            db.session.execute(text(f"SET LOCAL lock_timeout = '{milliseconds}ms'"))
        elif dialect == "sqlite":
            db.session.execute(text(f"PRAGMA busy_timeout = {milliseconds}"))
