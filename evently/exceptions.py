class EngineError(Exception):
    """Base class for errors surfaced to API callers with a specific kind."""

    code = "ENGINE_ERROR"
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None, **details):
        super().__init__(message or self.message)
        self.details = details

    def to_dict(self):
        body = {"error": str(self), "code": self.code}
        body.update(self.details)
        return body


class UnauthorizedError(EngineError):
    code = "FORBIDDEN"
    status_code = 403
    message = "You are not allowed to perform this action"


# Admission errors: user-correctable, returned synchronously.


class AdmissionError(EngineError):
    status_code = 400


class EventNotFound(AdmissionError):
    code = "EVENT_NOT_FOUND"
    status_code = 404
    message = "Event not found"


class EventNotAcceptingRegistrations(AdmissionError):
    code = "EVENT_NOT_ACCEPTING_REGISTRATIONS"
    message = "Cannot register for unpublished events"


class AlreadyRegistered(AdmissionError):
    code = "ALREADY_REGISTERED"
    status_code = 409
    message = "You are already registered for this event"


class EventFull(AdmissionError):
    code = "EVENT_FULL"
    status_code = 409
    message = "Event is full"


class RegistrationNotFound(AdmissionError):
    code = "REGISTRATION_NOT_FOUND"
    status_code = 404
    message = "Registration not found"


class RegistrationNotCancellable(AdmissionError):
    code = "REGISTRATION_NOT_CANCELLABLE"
    status_code = 409
    message = "Only active registrations can be cancelled"


class PaymentNotRequired(AdmissionError):
    code = "PAYMENT_NOT_REQUIRED"
    message = "This event is free, no payment required"


class InvalidRegistrationState(AdmissionError):
    code = "INVALID_REGISTRATION_STATE"
    status_code = 409
    message = "Registration is not awaiting payment"


# Payment integrity errors: never partially applied, logged for audit.


class PaymentIntegrityError(EngineError):
    status_code = 400


class InvalidSignature(PaymentIntegrityError):
    code = "INVALID_SIGNATURE"
    message = "Invalid payment signature"


class UnknownOrder(PaymentIntegrityError):
    code = "UNKNOWN_ORDER"
    status_code = 404
    message = "No registration found for this order"


class InvalidWebhookPayload(PaymentIntegrityError):
    code = "INVALID_PAYLOAD"
    message = "Invalid webhook payload"


# Transient errors: the caller may retry, nothing was changed.


class RetryableError(EngineError):
    status_code = 503
    retry_after = 5


class GatewayUnavailable(RetryableError):
    code = "GATEWAY_UNAVAILABLE"
    message = "Payment gateway unavailable, please retry"


class ReconciliationTimeout(RetryableError):
    code = "RECONCILIATION_TIMEOUT"
    message = "Payment verification timed out, please retry"


class MissingFieldsError(EngineError):
    code = "MISSING_FIELDS"
    status_code = 400
    message = "Missing required fields"

    def __init__(self, fields):
        super().__init__(missing_fields=fields)
        self.fields = fields
