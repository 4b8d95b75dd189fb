from evently.models.event import Event
from evently.models.registration import Registration
from evently.models.enums import EventStatus, RegistrationStatus, PaymentStatus, UserRole
