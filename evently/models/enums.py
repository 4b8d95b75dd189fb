from enum import Enum


class EventStatus(Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RegistrationStatus(Enum):
    REGISTERED = "registered"
    CANCELLED = "cancelled"
    ATTENDED = "attended"
    NO_SHOW = "no-show"


class PaymentStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FREE = "free"


class UserRole(Enum):
    ATTENDEE = "attendee"
    ORGANIZER = "organizer"
    ADMIN = "admin"


# Registrations holding the (event, attendee) slot; at most one per pair.
ACTIVE_STATUSES = (
    RegistrationStatus.REGISTERED,
    RegistrationStatus.ATTENDED,
    RegistrationStatus.NO_SHOW,
)

# Payment sub-states that count toward the attendee ledger.
SETTLED_PAYMENT_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.FREE)


def enum_values(enum_cls):
    return [member.value for member in enum_cls]
