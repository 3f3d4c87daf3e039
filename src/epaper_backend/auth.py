"""
Acting-user context and role checks.

Sessions are handled by the upstream login service, which forwards the
authenticated user as ``X-User-Id`` and ``X-User-Role`` headers. These
dependencies turn those headers into an explicit ActorContext and enforce
roles at the HTTP boundary, so the ingestion pipeline itself never looks at
session state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Header, HTTPException


class Role(str, Enum):
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    EDITOR = "Editor"
    VIEWER = "Viewer"


EDITION_MANAGERS = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


@dataclass(frozen=True)
class ActorContext:
    user_id: int
    role: Role

    @property
    def can_manage_editions(self) -> bool:
        return self.role in EDITION_MANAGERS


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Optional[ActorContext]:
    """Resolve the forwarded identity, or None for anonymous requests."""
    if not x_user_id:
        return None
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid user identity") from exc

    try:
        role = Role(x_user_role) if x_user_role else Role.VIEWER
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Unknown role") from exc
    return ActorContext(user_id=user_id, role=role)


def require_edition_manager(actor: Optional[ActorContext] = Depends(get_actor)) -> ActorContext:
    if actor is None:
        raise HTTPException(status_code=401, detail="Please log in to manage editions")
    if not actor.can_manage_editions:
        raise HTTPException(status_code=403, detail="You do not have permission to manage editions")
    return actor
