"""Ticket e-mail notifications.

Templates live in `helpdesk/templates/emails/<name>.html` and are rendered
with Jinja2. Delivery goes through an HTTP mail API with `requests`; with
MAIL_SUPPRESS_SEND enabled (the default) messages are only logged.

Notifications are scheduled as FastAPI background tasks after the request's
transaction has committed, and `NotificationDispatcher.send` never raises:
a failed delivery is logged and the originating operation still succeeds.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, Optional

import requests
from fastapi import BackgroundTasks
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.orm import Session

from helpdesk.access import SCOPE_LOAD_OPTIONS, resolve_allowed_company_ids
from helpdesk.models import RoleModel, TicketCommentModel, TicketModel, UserModel

logger = logging.getLogger(__name__)

MAIL_SUPPRESS_SEND = os.getenv("MAIL_SUPPRESS_SEND", "1").lower() in ("1", "true", "yes")
MAIL_API_URL = os.getenv("MAIL_API_URL")
MAIL_API_TOKEN = os.getenv("MAIL_API_TOKEN")
MAIL_FROM = os.getenv("MAIL_FROM", "helpdesk@localhost")
APP_NAME = os.getenv("APP_NAME", "Helpdesk")
APP_URL = os.getenv("APP_URL", "http://localhost:8000")

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates", "emails")

SUBJECTS = {
    "ticket_created": "[{ticket_key}] New ticket: {title}",
    "ticket_assigned": "[{ticket_key}] Ticket assigned to you: {title}",
    "ticket_commented": "[{ticket_key}] New comment on: {title}",
}

_env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(["html"]))


class NotificationDispatcher:
    def __init__(self, suppress: Optional[bool] = None, api_url: Optional[str] = None, api_token: Optional[str] = None, sender: Optional[str] = None):
        self.suppress = MAIL_SUPPRESS_SEND if suppress is None else suppress
        self.api_url = api_url or MAIL_API_URL
        self.api_token = api_token or MAIL_API_TOKEN
        self.sender = sender or MAIL_FROM

    def render(self, template: str, data: dict) -> tuple:
        ctx = {"app_name": APP_NAME, **data}
        html = _env.get_template(f"{template}.html").render(**ctx)
        subject = SUBJECTS.get(template, "{title}").format(**data.get("ticket", {}))
        return subject, html

    def send(self, template: str, recipient: str, data: dict) -> bool:
        """Render and deliver one message. Returns False on failure instead of raising."""
        try:
            subject, html = self.render(template, data)
            if self.suppress:
                logger.info("[MAIL_SUPPRESS_SEND=1] would send %s to %s | %s", template, recipient, subject)
                return True
            if not self.api_url:
                logger.warning("MAIL_API_URL not configured; dropping %s notification to %s", template, recipient)
                return False

            headers = {"Accept": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            payload = {"from": self.sender, "to": recipient, "subject": subject, "html": html}
            response = requests.post(self.api_url, json=payload, headers=headers, timeout=10)
            response.raise_for_status()
            logger.info("Notification %s sent to %s", template, recipient)
            return True
        except Exception:
            logger.exception("Failed to send %s notification to %s", template, recipient)
            return False


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency; tests override it with a recording fake."""
    return NotificationDispatcher()


def ticket_payload(ticket: TicketModel) -> dict:
    return {
        "id": ticket.id,
        "ticket_key": ticket.ticket_key,
        "title": ticket.title,
        "description": ticket.description or "",
        "type": ticket.type,
        "status": ticket.status,
        "priority": ticket.priority,
        "reporter": ticket.reporter.name if ticket.reporter else "Unknown",
        "assignee": ticket.assignee.name if ticket.assignee else "Unassigned",
        "url": f"{APP_URL.rstrip('/')}/tickets/{ticket.id}",
    }


def _has_flag(user: UserModel, flag: str) -> bool:
    return any(getattr(role, flag, False) for role in user.roles or [])


def _unique(users: Iterable[Optional[UserModel]]) -> List[UserModel]:
    seen: Dict[int, UserModel] = {}
    for user in users:
        if user is not None and user.is_active and user.id not in seen:
            seen[user.id] = user
    return list(seen.values())


def ticket_created_recipients(db: Session, ticket: TicketModel) -> List[UserModel]:
    """Users subscribed to new tickets in the ticket's company, plus a subscribed assignee."""
    candidates = (
        db.query(UserModel)
        .options(*SCOPE_LOAD_OPTIONS)
        .filter(UserModel.roles.any(RoleModel.notify_on_ticket_create.is_(True)))
        .all()
    )
    watchers = [
        u for u in candidates
        if u.id != ticket.reporter_id and ticket.company_id in resolve_allowed_company_ids(u)
    ]
    assignee = ticket.assignee if ticket.assignee and _has_flag(ticket.assignee, "notify_on_ticket_assign") else None
    return _unique([*watchers, assignee])


def ticket_assigned_recipients(ticket: TicketModel) -> List[UserModel]:
    assignee = ticket.assignee
    if assignee is None or not _has_flag(assignee, "notify_on_ticket_assign"):
        return []
    return _unique([assignee])


def ticket_commented_recipients(ticket: TicketModel, comment: TicketCommentModel) -> List[UserModel]:
    return _unique(u for u in (ticket.reporter, ticket.assignee) if u is not None and u.id != comment.user_id)


def schedule(background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher, template: str, recipients: Iterable[UserModel], data: dict) -> int:
    """Queue one message per recipient. Data is copied into plain dicts so tasks outlive the session."""
    count = 0
    for user in recipients:
        background_tasks.add_task(dispatcher.send, template, user.email, {**data, "recipient_name": user.name})
        count += 1
    if count:
        logger.debug("Queued %d %s notification(s)", count, template)
    return count


__all__ = [
    "NotificationDispatcher",
    "get_dispatcher",
    "ticket_payload",
    "ticket_created_recipients",
    "ticket_assigned_recipients",
    "ticket_commented_recipients",
    "schedule",
]
