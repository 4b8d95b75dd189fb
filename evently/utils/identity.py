from typing import NamedTuple, Optional
from flask_jwt_extended import get_jwt, get_jwt_identity
from evently.models.enums import UserRole


class Identity(NamedTuple):
    """Authenticated caller as vouched for by the auth service's JWT."""

    id: int
    role: UserRole = UserRole.ATTENDEE
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN


def current_identity() -> Identity:
    """Build the identity for the request; call inside a @jwt_required view."""
    claims = get_jwt()
    try:
        role = UserRole(claims.get("role", UserRole.ATTENDEE.value))
    except ValueError:
        role = UserRole.ATTENDEE
    return Identity(
        id=int(get_jwt_identity()),
        role=role,
        email=claims.get("email"),
        name=claims.get("name"),
    )
