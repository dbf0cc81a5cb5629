"""Authentication API routes: login and current-user endpoint."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.auth import ACCESS_TOKEN_EXPIRE_MINUTES, authenticate_user, create_access_token, get_current_user
from helpdesk.database import get_db
from helpdesk.errors import api_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/login", response_model=schemas.TokenResponse)
async def login(credentials: schemas.LoginRequest, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    """Authenticate by email and password and return a JWT token and user info."""
    user = authenticate_user(db, credentials.email, credentials.password)
    if not user:
        logger.info("Failed login for %s", credentials.email)
        raise api_error(status.HTTP_401_UNAUTHORIZED, "invalid_credentials", "Invalid credentials")

    if not user.is_active:
        logger.info("Login refused for inactive user %s", user.id)
        raise api_error(status.HTTP_401_UNAUTHORIZED, "user_inactive", "User inactive")

    access_token = create_access_token(user.id, expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return schemas.TokenResponse(
        access_token=access_token,
        token_type="bearer",
        user=schemas.UserResponse.model_validate(user),
    )


@router.get("/me")
async def me(current_user: models.UserModel = Depends(get_current_user)) -> dict:
    """Return the current user together with their permission names and allowed companies."""
    from helpdesk.access import resolve_allowed_company_ids

    permissions = sorted({p.name for role in current_user.roles for p in role.permissions})
    return {
        **schemas.UserResponse.model_validate(current_user).model_dump(),
        "permissions": permissions,
        "allowed_company_ids": sorted(resolve_allowed_company_ids(current_user)),
    }
