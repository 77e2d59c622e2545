"""
Authenticated caller passed to every core operation.

The identity layer supplies {id, role}; the core trusts it and applies
its own role checks on top.
"""
from dataclasses import dataclass
from typing import Optional

from ..models.db_models import UserRole
from .errors import PermissionDenied


@dataclass(frozen=True)
class Actor:
    id: str
    role: UserRole
    name: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, role=UserRole(user.role), name=getattr(user, "name", None))

    @property
    def is_operator(self) -> bool:
        return self.role == UserRole.SUPER_AGENT


def require_operator(actor: Actor, action: str = "perform this action") -> None:
    if not actor.is_operator:
        raise PermissionDenied(f"Only the platform operator may {action}")
