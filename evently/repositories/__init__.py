from evently.repositories.event_repository import EventRepository
from evently.repositories.registration_repository import RegistrationRepository
