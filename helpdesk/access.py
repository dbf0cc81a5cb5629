"""Company access scope and ticket visibility.

Every read path that exposes ticket-derived rows (ticket list and detail,
dashboard counts, history and comment activity feeds, attachment downloads)
builds its filter through `ticket_visibility_clause`, usually via a
`TicketScope` created once per request.

Rules, AND-ed together:
- users holding the reporter-only role only see tickets they reported;
- tickets must belong to one of the user's allowed companies; an empty
  allowed set matches nothing;
- soft-deleted tickets are never visible.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Set

from sqlalchemy import and_, false
from sqlalchemy.orm import Query, Session, selectinload
from sqlalchemy.sql.elements import ColumnElement

from helpdesk.models import RoleModel, TicketCommentModel, TicketHistoryModel, TicketModel, UserModel

logger = logging.getLogger(__name__)

REPORTER_ROLE_NAME = os.getenv("REPORTER_ROLE_NAME", "User")

# Loads user -> roles -> (companies, permissions) in a fixed number of queries.
SCOPE_LOAD_OPTIONS = (
    selectinload(UserModel.roles).selectinload(RoleModel.companies),
    selectinload(UserModel.roles).selectinload(RoleModel.permissions),
)


def load_user_with_scope(db: Session, user_id: int) -> Optional[UserModel]:
    """Return the user with the role/company graph needed by `resolve_allowed_company_ids`."""
    return db.query(UserModel).options(*SCOPE_LOAD_OPTIONS).filter(UserModel.id == user_id).first()


def resolve_allowed_company_ids(user: UserModel) -> Set[int]:
    """Union of every company attached to the user's roles and the user's own company.

    Pure: reads only the already-loaded graph. Returns an empty set when the
    user has no affiliation at all.
    """
    allowed: Set[int] = set()
    for role in user.roles or []:
        allowed.update(company.id for company in role.companies or [])
    if user.company_id is not None:
        allowed.add(user.company_id)
    return allowed


def is_reporter_only(user: UserModel) -> bool:
    return any(role.name == REPORTER_ROLE_NAME for role in user.roles or [])


def ticket_visibility_clause(user: UserModel, allowed_company_ids: Iterable[int]) -> ColumnElement[bool]:
    """Build the predicate restricting `TicketModel` rows to those `user` may see."""
    allowed = sorted(set(allowed_company_ids))
    conditions = [TicketModel.deleted_at.is_(None)]
    if is_reporter_only(user):
        conditions.append(TicketModel.reporter_id == user.id)
    if allowed:
        conditions.append(TicketModel.company_id.in_(allowed))
    else:
        conditions.append(false())
    return and_(*conditions)


@dataclass(frozen=True)
class TicketScope:
    """A user's ticket visibility for the duration of one request."""

    user: UserModel
    allowed_company_ids: FrozenSet[int]

    @classmethod
    def for_user(cls, user: UserModel) -> "TicketScope":
        scope = cls(user=user, allowed_company_ids=frozenset(resolve_allowed_company_ids(user)))
        if not scope.allowed_company_ids:
            logger.debug("User %s has no company affiliation; ticket scope is empty", user.id)
        return scope

    @property
    def clause(self) -> ColumnElement[bool]:
        return ticket_visibility_clause(self.user, self.allowed_company_ids)

    @property
    def reporter_only(self) -> bool:
        return is_reporter_only(self.user)

    def tickets(self, db: Session) -> Query:
        return db.query(TicketModel).filter(self.clause)

    def histories(self, db: Session) -> Query:
        return db.query(TicketHistoryModel).filter(TicketHistoryModel.ticket.has(self.clause))

    def comments(self, db: Session) -> Query:
        return db.query(TicketCommentModel).filter(TicketCommentModel.ticket.has(self.clause))

    def get_ticket(self, db: Session, ticket_id: str) -> Optional[TicketModel]:
        """Return the ticket when it exists and is visible, otherwise None."""
        return self.tickets(db).filter(TicketModel.id == ticket_id).first()


__all__ = [
    "REPORTER_ROLE_NAME",
    "SCOPE_LOAD_OPTIONS",
    "load_user_with_scope",
    "resolve_allowed_company_ids",
    "is_reporter_only",
    "ticket_visibility_clause",
    "TicketScope",
]
