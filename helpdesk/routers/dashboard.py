"""Dashboard route: stats, recent tickets, assigned work and the activity feed."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.access import TicketScope
from helpdesk.dashboard import build_dashboard
from helpdesk.database import get_db
from helpdesk.dependencies import get_ticket_scope, require_permission

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


@router.get("/")
async def dashboard(
    year: Optional[int] = Query(None, ge=1970, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: Session = Depends(get_db),
    scope: TicketScope = Depends(get_ticket_scope),
    current_user: models.UserModel = Depends(require_permission("dashboard.view")),
) -> dict:
    """`year`/`month` narrow stats and recent tickets to tickets created in that period."""
    return build_dashboard(db, current_user, year=year, month=month, scope=scope)
