"""Append-only ticket change log."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from helpdesk.models import TicketHistoryModel, TicketModel, UserModel

TRACKED_COLUMNS = ("title", "description", "type", "status", "priority", "severity", "assignee_id", "company_id")


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def apply_ticket_changes(db: Session, ticket: TicketModel, changes: dict, actor: Optional[UserModel], now: Optional[datetime] = None) -> List[TicketHistoryModel]:
    """Set changed attributes on `ticket` and add one history row per tracked column.

    Unchanged values are skipped. The caller commits.
    """
    now = now or datetime.now(timezone.utc)
    entries: List[TicketHistoryModel] = []
    touched = False
    for column, new_value in changes.items():
        if isinstance(new_value, Enum):
            new_value = new_value.value
        old_value = getattr(ticket, column)
        if old_value == new_value:
            continue
        setattr(ticket, column, new_value)
        touched = True
        if column not in TRACKED_COLUMNS:
            continue
        entry = TicketHistoryModel(
            ticket_id=ticket.id,
            user_id=actor.id if actor is not None else None,
            column_changed=column,
            old_value=_as_text(old_value),
            new_value=_as_text(new_value),
            changed_at=now,
        )
        db.add(entry)
        entries.append(entry)
    if touched:
        ticket.updated_at = now
    return entries


__all__ = ["TRACKED_COLUMNS", "apply_ticket_changes"]
