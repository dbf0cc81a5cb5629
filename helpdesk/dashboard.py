"""Dashboard aggregation: ticket stats, recent and assigned tickets, activity feed.

Everything except `my_tickets` goes through the caller's `TicketScope`, so
the counts, the recent list and the activity feed describe exactly the
tickets the ticket list would show. `my_tickets` is the caller's own work
queue and is keyed on assignment alone.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import extract, func
from sqlalchemy.orm import Query, Session, joinedload

from helpdesk.access import TicketScope
from helpdesk.models import TicketCommentModel, TicketHistoryModel, TicketModel, TicketStatus, UserModel

RECENT_TICKETS_LIMIT = 5
MY_TICKETS_LIMIT = 5
ACTIVITY_LIMIT = 10
YEARS_BACK = 3

_UNITS = (
    ("year", 365 * 86400),
    ("month", 30 * 86400),
    ("week", 7 * 86400),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they were stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def time_ago(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Human relative time, e.g. `"5 minutes ago"` or `"2 days from now"`."""
    if value is None:
        return ""
    now = _aware(now) or datetime.now(timezone.utc)
    seconds = int((now - _aware(value)).total_seconds())
    suffix = "ago" if seconds >= 0 else "from now"
    seconds = max(abs(seconds), 1)
    for unit, size in _UNITS:
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} {suffix}"
    return f"1 second {suffix}"


def _capitalize(value: Optional[str]) -> str:
    value = value or ""
    return value[:1].upper() + value[1:]


def format_action(history: TicketHistoryModel) -> str:
    column = history.column_changed
    if column == "status":
        return f"changed status to {_capitalize(history.new_value)}"
    if column == "priority":
        return f"changed priority to {_capitalize(history.new_value)}"
    if column == "assignee_id":
        return "reassigned ticket"
    return "updated " + column.replace("_", " ")


def filtered_tickets(db: Session, scope: TicketScope, year: Optional[int] = None, month: Optional[int] = None) -> Query:
    query = scope.tickets(db)
    if year:
        query = query.filter(extract("year", TicketModel.created_at) == year)
    if month:
        query = query.filter(extract("month", TicketModel.created_at) == month)
    return query


def ticket_stats(query: Query) -> dict:
    by_status = dict(
        query.with_entities(TicketModel.status, func.count(TicketModel.id)).group_by(TicketModel.status).all()
    )
    return {
        "total": query.count(),
        "open": by_status.get(TicketStatus.OPEN.value, 0),
        "in_progress": by_status.get(TicketStatus.IN_PROGRESS.value, 0),
        "closed": by_status.get(TicketStatus.CLOSED.value, 0),
        "waiting": by_status.get(TicketStatus.WAITING.value, 0),
        "unassigned": query.filter(TicketModel.assignee_id.is_(None)).count(),
    }


def recent_tickets(query: Query, now: datetime, limit: int = RECENT_TICKETS_LIMIT) -> List[dict]:
    rows = (
        query.options(joinedload(TicketModel.reporter), joinedload(TicketModel.assignee), joinedload(TicketModel.company))
        .order_by(TicketModel.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": t.id,
            "key": t.ticket_key or t.id,
            "title": t.title,
            "status": t.status,
            "priority": t.priority,
            "company_name": t.company.name if t.company else "N/A",
            "created_at": time_ago(t.created_at, now),
            "reporter": t.reporter.name if t.reporter else "Unknown",
            "assignee": t.assignee.name if t.assignee else "Unassigned",
        }
        for t in rows
    ]


def my_tickets(db: Session, user: UserModel, now: datetime, limit: int = MY_TICKETS_LIMIT) -> List[dict]:
    rows = (
        db.query(TicketModel)
        .options(joinedload(TicketModel.company))
        .filter(
            TicketModel.assignee_id == user.id,
            TicketModel.status != TicketStatus.CLOSED.value,
            TicketModel.deleted_at.is_(None),
        )
        .order_by(TicketModel.updated_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": t.id,
            "key": t.ticket_key or t.id,
            "title": t.title,
            "status": t.status,
            "priority": t.priority,
            "company_name": t.company.name if t.company else "N/A",
            "updated_at": time_ago(t.updated_at, now),
        }
        for t in rows
    ]


def history_activity(db: Session, scope: TicketScope, now: datetime, limit: int = ACTIVITY_LIMIT) -> List[dict]:
    rows = (
        scope.histories(db)
        .options(joinedload(TicketHistoryModel.user), joinedload(TicketHistoryModel.ticket))
        .order_by(TicketHistoryModel.changed_at.desc(), TicketHistoryModel.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "type": "history",
            "id": h.id,
            "user": h.user.name if h.user else "System",
            "user_photo": h.user.profile_photo if h.user else None,
            "action": format_action(h),
            "ticket_id": h.ticket_id,
            "ticket_key": h.ticket.ticket_key if h.ticket else "Unknown",
            "ticket_title": h.ticket.title if h.ticket else None,
            "timestamp": _aware(h.changed_at),
            "time": time_ago(h.changed_at, now),
        }
        for h in rows
    ]


def comment_activity(db: Session, scope: TicketScope, now: datetime, limit: int = ACTIVITY_LIMIT) -> List[dict]:
    rows = (
        scope.comments(db)
        .options(joinedload(TicketCommentModel.user), joinedload(TicketCommentModel.ticket))
        .order_by(TicketCommentModel.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "type": "comment",
            "id": c.id,
            "user": c.user.name if c.user else "Unknown User",
            "user_photo": c.user.profile_photo if c.user else None,
            "action": "commented on",
            "comment_text": c.comment_text,
            "ticket_id": c.ticket_id,
            "ticket_key": c.ticket.ticket_key if c.ticket else "Unknown",
            "ticket_title": c.ticket.title if c.ticket else None,
            "timestamp": _aware(c.created_at),
            "time": time_ago(c.created_at, now),
        }
        for c in rows
    ]


def merge_activity(histories: List[dict], comments: List[dict], limit: int = ACTIVITY_LIMIT) -> List[dict]:
    """Concatenate both feeds, newest first, and keep the top `limit` entries."""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    merged = sorted([*histories, *comments], key=lambda e: e["timestamp"] or epoch, reverse=True)
    return merged[:limit]


def year_options(now: datetime) -> List[int]:
    return [now.year - i for i in range(YEARS_BACK + 1)]


def month_options() -> List[dict]:
    return [{"id": i, "name": calendar.month_name[i]} for i in range(1, 13)]


def build_dashboard(db: Session, user: UserModel, year: Optional[int] = None, month: Optional[int] = None, now: Optional[datetime] = None, scope: Optional[TicketScope] = None) -> dict:
    now = _aware(now) or datetime.now(timezone.utc)
    scope = scope or TicketScope.for_user(user)
    filtered = filtered_tickets(db, scope, year, month)
    return {
        "stats": ticket_stats(filtered),
        "recent_tickets": recent_tickets(filtered, now),
        "my_tickets": my_tickets(db, user, now),
        "activity": merge_activity(history_activity(db, scope, now), comment_activity(db, scope, now)),
        "filters": {"year": year or None, "month": month or None},
        "years": year_options(now),
        "months": month_options(),
    }


__all__ = [
    "time_ago",
    "format_action",
    "filtered_tickets",
    "ticket_stats",
    "merge_activity",
    "build_dashboard",
]
