"""Login credentials and bearer tokens.

Tokens carry the user's numeric id in `sub`, so a token keeps working after the
user changes their email through the profile endpoint. Every request reloads
the user with the role/company/permission graph that visibility and
permission checks read (`SCOPE_LOAD_OPTIONS`).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.access import SCOPE_LOAD_OPTIONS, load_user_with_scope
from helpdesk.database import get_db
from helpdesk.errors import api_error

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET", "change-this-secret-in-production")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# argon2 for new hashes; bcrypt hashes from imported accounts still verify
pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    issued = datetime.now(timezone.utc)
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": str(user_id), "iat": issued, "exp": issued + lifetime}
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def token_user_id(token: str) -> Optional[int]:
    """Return the user id a token was issued for, or None when it is expired, forged or malformed."""
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        return None

    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub.isdigit():
        return None
    return int(sub)


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.UserModel]:
    """Match email and password. Inactive users are returned too; the caller decides how to refuse them."""
    user = (
        db.query(models.UserModel)
        .options(*SCOPE_LOAD_OPTIONS)
        .filter(models.UserModel.email == email)
        .first()
    )
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> models.UserModel:
    user_id = token_user_id(token)
    user = load_user_with_scope(db, user_id) if user_id is not None else None
    if user is None:
        raise api_error(
            status.HTTP_401_UNAUTHORIZED,
            "invalid_credentials",
            "Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise api_error(status.HTTP_401_UNAUTHORIZED, "user_inactive", "Inactive user")
    return user


__all__ = [
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "token_user_id",
    "authenticate_user",
    "get_current_user",
    "oauth2_scheme",
]
