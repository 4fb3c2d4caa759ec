# Overview: Acting-user identity passed into every service call.

from __future__ import annotations

from dataclasses import dataclass

from ..models.accounts import ROLE_ADMIN


@dataclass(frozen=True)
class Actor:
    """
    The user on whose behalf a service call runs.

    Services authorize against this value only; they never look at the
    request context.
    """
    user_id: int
    role: str
    company_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, role=user.role, company_id=user.company_id)
