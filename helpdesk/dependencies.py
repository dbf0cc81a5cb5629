"""Common FastAPI dependency helpers for permissions and ticket scope.

Provides:
- has_permission (boolean check)
- require_permission (dependency factory, raises 403 when the permission is missing)
- get_ticket_scope (the caller's TicketScope, built once per request)
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends

from helpdesk import models
from helpdesk.access import TicketScope
from helpdesk.auth import get_current_user
from helpdesk.errors import Forbidden

logger = logging.getLogger(__name__)


def has_permission(user: models.UserModel, name: str) -> bool:
    """Return True when any of the user's roles grants `name`."""
    return any(perm.name == name for role in user.roles or [] for perm in role.permissions or [])


def require_permission(name: str) -> Callable[..., models.UserModel]:
    """Dependency factory: `Depends(require_permission("tickets.create"))` returns the current user or raises 403."""

    def dependency(current_user: models.UserModel = Depends(get_current_user)) -> models.UserModel:
        if not has_permission(current_user, name):
            logger.debug("require_permission(%s): denied for user=%s", name, current_user.id)
            raise Forbidden(f"Missing permission: {name}", code="permission_denied")
        return current_user

    dependency.__name__ = f"require_{name.replace('.', '_')}"
    return dependency


def get_ticket_scope(current_user: models.UserModel = Depends(get_current_user)) -> TicketScope:
    return TicketScope.for_user(current_user)


__all__ = ["has_permission", "require_permission", "get_ticket_scope"]
