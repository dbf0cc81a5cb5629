"""System routes: development seed endpoint.

`/api/seed` creates the default permission catalogue, the Admin /
Tech Support / User roles, a demo company and the demo accounts. It is
safe to call repeatedly.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from helpdesk.database import get_db
from helpdesk.seed import seed_database

router = APIRouter(prefix="/api", tags=["System"])


@router.post("/seed")
async def seed_data(db: Session = Depends(get_db)):
    """Seed default roles, permissions and demo users (idempotent)."""
    return seed_database(db=db)
