from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from evently.exceptions import MissingFieldsError
from evently.extensions import limiter
from evently.services.payment_service import PaymentService
from evently.utils.identity import current_identity

payment_bp = Blueprint("payment", __name__)


def _require_fields(data, *fields):
    missing = [field for field in fields if data.get(field) in (None, "")]
    if missing:
        raise MissingFieldsError(missing)


@payment_bp.route("/config", methods=["GET"])
def get_payment_config():
    """Get the gateway publishable key for the frontend"""
    return jsonify(PaymentService.get_gateway_config()), 200


@payment_bp.route("/create-order", methods=["POST"])
@jwt_required()
def create_order_for_event():
    """Hold a seat on a paid event and open a gateway order for it"""
    data = request.get_json(silent=True) or {}
    _require_fields(data, "eventId")
    try:
        event_id = int(data["eventId"])
    except (TypeError, ValueError):
        return jsonify({"error": "eventId must be an integer"}), 400

    result = PaymentService.start_checkout(event_id, current_identity())
    return jsonify(result), 200


@payment_bp.route("/registrations/<int:registration_id>/order", methods=["POST"])
@jwt_required()
def create_order_for_registration(registration_id):
    """Open (or re-open) a gateway order for an existing pending registration"""
    result = PaymentService.create_order(registration_id, current_identity())
    return jsonify(result), 200


@payment_bp.route("/verify", methods=["POST"])
@jwt_required()
def verify_payment():
    data = request.get_json(silent=True) or {}
    _require_fields(data, "orderId", "paymentId", "signature", "registrationId")
    try:
        registration_id = int(data["registrationId"])
    except (TypeError, ValueError):
        return jsonify({"error": "registrationId must be an integer"}), 400

    registration, transitioned = PaymentService.verify_synchronous(
        data["orderId"], data["paymentId"], data["signature"], registration_id
    )
    return jsonify(
        {
            "message": "Payment verified",
            "registration": registration.to_dict(),
            "transitioned": transitioned,
        }
    ), 200


@payment_bp.route("/webhook", methods=["POST"])
@limiter.exempt
def payment_webhook():
    """Handle gateway webhook deliveries"""
    header = current_app.config["PAYMENT_WEBHOOK_SIGNATURE_HEADER"]
    signature = request.headers.get(header)
    if not signature:
        current_app.logger.error(f"Webhook received without {header} header")
        return jsonify({"error": "Missing signature", "code": "INVALID_SIGNATURE"}), 400

    # Signatures cover the exact bytes sent, so the body must not be re-encoded.
    result = PaymentService.handle_webhook(request.get_data(), signature)
    return jsonify(result), 200


@payment_bp.route("/registrations/<int:registration_id>", methods=["DELETE"])
@payment_bp.route("/cancel/<int:registration_id>", methods=["DELETE"])
@jwt_required()
def cancel_pending_payment(registration_id):
    """Abandon a checkout that was never paid"""
    PaymentService.cancel_pending_payment(registration_id, current_identity())
    return jsonify({"message": "Pending payment cancelled"}), 200


@payment_bp.route("/history", methods=["GET"])
@jwt_required()
def get_payment_history():
    registrations = PaymentService.payment_history(current_identity())
    return jsonify(
        [registration.to_dict(include_event=True) for registration in registrations]
    ), 200
