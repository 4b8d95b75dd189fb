from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from evently.exceptions import UnauthorizedError
from evently.services.ledger_audit_service import LedgerAuditService
from evently.services.payment_service import PaymentService
from evently.utils.identity import current_identity

admin_bp = Blueprint("admin", __name__)


def _require_admin():
    identity = current_identity()
    if not identity.is_admin:
        raise UnauthorizedError("Admin privileges required")
    return identity


@admin_bp.route("/admin/check", methods=["GET"])
@jwt_required()
def check_admin():
    """Check if current user is an admin"""
    if not current_identity().is_admin:
        return jsonify({"is_admin": False}), 403
    return jsonify({"is_admin": True})


@admin_bp.route("/admin/ledger/audit", methods=["POST"])
@jwt_required()
def audit_all_ledgers():
    """Recount attendee ledgers for every event (admin only)"""
    identity = _require_admin()
    data = request.get_json(silent=True) or {}
    only_flagged = bool(data.get("only_flagged", False))

    current_app.logger.info(
        f"Ledger audit requested by admin {identity.id} (only_flagged={only_flagged})"
    )
    results = LedgerAuditService.audit_all_events(only_flagged=only_flagged)
    return jsonify(
        {
            "checked": len(results),
            "corrected": sum(1 for result in results if result["corrected"]),
            "results": results,
        }
    ), 200


@admin_bp.route("/admin/events/<int:event_id>/ledger/audit", methods=["POST"])
@jwt_required()
def audit_event_ledger(event_id):
    """Recount the attendee ledger for one event (admin only)"""
    _require_admin()
    return jsonify(LedgerAuditService.audit_event(event_id)), 200


@admin_bp.route("/admin/payments/purge-pending", methods=["POST"])
@jwt_required()
def purge_pending_payments():
    """Release seats held by checkouts older than the hold TTL (admin only)"""
    _require_admin()
    purged = PaymentService.purge_expired_holds()
    return jsonify({"purged": purged}), 200
