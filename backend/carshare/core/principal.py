"""Current-user capability passed explicitly into service calls."""

from __future__ import annotations

from dataclasses import dataclass

from .enums import STAFF_ROLES, RoleName


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated user making a request.

    Services receive this object as an argument instead of reading an
    ambient request context.
    """

    user_id: str
    role: RoleName

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
