"""
beboard.identity — Authenticated Caller
=========================================

The services never authenticate.  The API layer decodes the bearer token
into an :class:`Identity` and the services authorize against ownership
fields with the helpers below.
"""

from __future__ import annotations

from dataclasses import dataclass

from beboard.database.models import UserRole
from beboard.errors import Forbidden


@dataclass(frozen=True, slots=True)
class Identity:
    id: int
    nickname: str
    role: str = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def is_owner_or_admin(identity: Identity, owner_id: int) -> bool:
    return identity.id == owner_id or identity.is_admin


def ensure_owner(identity: Identity, owner_id: int, action: str, *, allow_admin: bool = False) -> None:
    """Raise :class:`Forbidden` unless *identity* owns the target."""
    if identity.id == owner_id:
        return
    if allow_admin and identity.is_admin:
        return
    raise Forbidden(f"Not allowed to {action}")
