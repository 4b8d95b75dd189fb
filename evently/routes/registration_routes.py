from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from evently.models.enums import PaymentStatus, RegistrationStatus
from evently.services.registration_service import RegistrationService
from evently.utils.identity import current_identity

registration_bp = Blueprint("registration", __name__)


def _status_filter(default=None):
    """Read the optional ?status= filter; "all" disables filtering."""
    value = request.args.get("status")
    if value is None:
        return default, None
    if value == "all":
        return None, None
    try:
        return RegistrationStatus(value), None
    except ValueError:
        allowed = [status.value for status in RegistrationStatus] + ["all"]
        return None, (jsonify({"error": f"Invalid status filter: {value}", "allowed": allowed}), 400)


@registration_bp.route("/events/<int:event_id>/register", methods=["POST"])
@jwt_required()
def register_for_event(event_id):
    identity = current_identity()
    registration = RegistrationService.attempt_register(event_id, identity)

    response = {"registration": registration.to_dict()}
    if registration.payment_status == PaymentStatus.PENDING:
        response["requires_payment"] = True
        response["message"] = "Seat held, complete payment to confirm your registration"
    else:
        response["message"] = "Successfully registered for event"
    return jsonify(response), 201


@registration_bp.route("/events/<int:event_id>/register", methods=["DELETE"])
@jwt_required()
def cancel_event_registration(event_id):
    identity = current_identity()
    registration = RegistrationService.cancel_for_event(event_id, identity)
    return jsonify(
        {"message": "Registration cancelled", "registration": registration.to_dict()}
    ), 200


@registration_bp.route("/registrations/<int:registration_id>/cancel", methods=["POST"])
@jwt_required()
def cancel_registration(registration_id):
    identity = current_identity()
    current_app.logger.info(
        f"Cancel registration request: attendee {identity.id}, registration {registration_id}"
    )
    registration = RegistrationService.cancel(registration_id, identity)
    return jsonify(
        {"message": "Registration cancelled", "registration": registration.to_dict()}
    ), 200


@registration_bp.route("/registrations/my-events", methods=["GET"])
@jwt_required()
def get_my_registrations():
    """List the caller's registrations, active ones unless ?status= says otherwise"""
    status, error = _status_filter(default=RegistrationStatus.REGISTERED)
    if error:
        return error
    registrations = RegistrationService.my_registrations(current_identity(), status)
    return jsonify(
        [registration.to_dict(include_event=True) for registration in registrations]
    ), 200


@registration_bp.route("/events/<int:event_id>/registrations", methods=["GET"])
@jwt_required()
def get_event_registrations(event_id):
    """List registrations for an event (organizer or admin only)"""
    status, error = _status_filter()
    if error:
        return error
    registrations = RegistrationService.event_registrations(
        event_id, current_identity(), status
    )
    return jsonify([registration.to_dict() for registration in registrations]), 200
