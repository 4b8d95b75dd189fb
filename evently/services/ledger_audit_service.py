from typing import Any, Dict, List
from flask import current_app
from evently.extensions import db
from evently.exceptions import EventNotFound
from evently.repositories import EventRepository, RegistrationRepository


class LedgerAuditService:
    """Recompute attendee ledgers from the registrations they summarize."""

    @staticmethod
    def audit_event(event_id: int) -> Dict[str, Any]:
        """Recount one event and overwrite its ledger if it drifted.

        Runs under the same per-event serialization as admission, so no
        registration can be admitted or confirmed between the count and the
        overwrite.
        """
        try:
            event = EventRepository.lock_for_admission(event_id)
            if event is None:
                raise EventNotFound()

            previous = event.current_attendees
            recomputed = RegistrationRepository.count_settled(event_id)
            corrected = previous != recomputed
            if corrected or event.ledger_needs_audit:
                EventRepository.overwrite_ledger(event_id, recomputed)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if corrected:
            current_app.logger.warning(
                f"Ledger drift on event {event_id}: {previous} -> {recomputed}"
            )
        return {
            "event_id": event_id,
            "previous": previous,
            "recomputed": recomputed,
            "corrected": corrected,
        }

    @staticmethod
    def audit_all_events(only_flagged: bool = False) -> List[Dict[str, Any]]:
        event_ids = [event.id for event in EventRepository.get_events(only_flagged)]
        results = []
        for event_id in event_ids:
            try:
                results.append(LedgerAuditService.audit_event(event_id))
            except EventNotFound:
                # Deleted since the listing was taken.
                continue

        corrected = sum(1 for result in results if result["corrected"])
        current_app.logger.info(
            f"Ledger audit complete: {len(results)} event(s) checked, {corrected} corrected"
        )
        return results
