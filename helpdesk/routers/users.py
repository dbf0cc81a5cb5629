"""User management routes.

Endpoints implemented:
- GET    /api/users                       (users.view)
- POST   /api/users                       (users.create)
- GET    /api/users/{id}                  (users.view)
- PATCH  /api/users/{id}                  (users.edit; role_ids replaces the user's roles)
- DELETE /api/users/{id}                  (users.delete; not yourself)
- PUT    /api/users/{id}/reset-password   (users.edit)
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from helpdesk import models, schemas
from helpdesk.auth import get_password_hash
from helpdesk.database import get_db
from helpdesk.dependencies import require_permission
from helpdesk.errors import Conflict, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


def get_user_or_404(db: Session, user_id: int) -> models.UserModel:
    user = db.query(models.UserModel).filter(models.UserModel.id == user_id).first()
    if not user:
        raise NotFound("User not found", code="user_not_found")
    return user


def _ensure_email_free(db: Session, email: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(models.UserModel).filter(models.UserModel.email == email)
    if exclude_id is not None:
        query = query.filter(models.UserModel.id != exclude_id)
    if query.first():
        raise Conflict("Email already in use", code="email_in_use")


def _resolve_roles(db: Session, role_ids: List[int]) -> List[models.RoleModel]:
    ids = sorted(set(role_ids))
    roles = db.query(models.RoleModel).filter(models.RoleModel.id.in_(ids)).all() if ids else []
    missing = set(ids) - {r.id for r in roles}
    if missing:
        raise ValidationFailed.for_field("role_ids", f"Unknown role id(s): {', '.join(str(i) for i in sorted(missing))}")
    return roles


def _check_company(db: Session, company_id: Optional[int]) -> None:
    if company_id is not None and not db.get(models.CompanyModel, company_id):
        raise ValidationFailed.for_field("company_id", "Unknown company")


@router.get("/")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _user: models.UserModel = Depends(require_permission("users.view")),
):
    query = db.query(models.UserModel).options(selectinload(models.UserModel.roles))
    if search:
        like = f"%{search}%"
        query = query.filter(or_(models.UserModel.name.like(like), models.UserModel.email.like(like)))

    total = query.count()
    users = query.order_by(models.UserModel.created_at.desc(), models.UserModel.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [schemas.UserResponse.model_validate(u) for u in users],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }


@router.post("/", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_in: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.UserModel = Depends(require_permission("users.create")),
) -> schemas.UserResponse:
    _ensure_email_free(db, user_in.email)
    _check_company(db, user_in.company_id)
    roles = _resolve_roles(db, user_in.role_ids)

    db_user = models.UserModel(
        name=user_in.name,
        email=user_in.email,
        hashed_password=get_password_hash(user_in.password),
        department=user_in.department,
        position=user_in.position,
        company_id=user_in.company_id,
        is_active=user_in.is_active,
    )
    db_user.roles = roles
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info("User %s created by user %s", db_user.id, current_user.id)
    return schemas.UserResponse.model_validate(db_user)


@router.get("/{user_id}", response_model=schemas.UserResponse)
async def get_user(user_id: int, db: Session = Depends(get_db), _user: models.UserModel = Depends(require_permission("users.view"))) -> schemas.UserResponse:
    return schemas.UserResponse.model_validate(get_user_or_404(db, user_id))


@router.patch("/{user_id}", response_model=schemas.UserResponse)
async def update_user(
    user_id: int,
    payload: schemas.UserUpdate,
    db: Session = Depends(get_db),
    _user: models.UserModel = Depends(require_permission("users.edit")),
) -> schemas.UserResponse:
    user = get_user_or_404(db, user_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("email") and data["email"] != user.email:
        _ensure_email_free(db, data["email"], exclude_id=user.id)
    if "company_id" in data:
        _check_company(db, data["company_id"])
    role_ids = data.pop("role_ids", None)
    if role_ids is not None:
        user.roles = _resolve_roles(db, role_ids)

    for field, value in data.items():
        if value is None and field in ("name", "email", "is_active"):
            continue
        setattr(user, field, value)

    db.commit()
    db.refresh(user)
    return schemas.UserResponse.model_validate(user)


@router.delete("/{user_id}")
async def delete_user(user_id: int, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_permission("users.delete"))):
    user = get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise Forbidden("You cannot delete your own account", code="cannot_delete_self")
    db.delete(user)
    db.commit()
    logger.info("User %s deleted by user %s", user_id, current_user.id)
    return {"message": "User deleted successfully."}


@router.put("/{user_id}/reset-password")
async def reset_password(
    user_id: int,
    payload: schemas.ResetPasswordRequest,
    db: Session = Depends(get_db),
    current_user: models.UserModel = Depends(require_permission("users.edit")),
):
    user = get_user_or_404(db, user_id)
    user.hashed_password = get_password_hash(payload.password)
    db.commit()
    logger.info("Password for user %s reset by user %s", user.id, current_user.id)
    return {"message": "Password reset successfully."}
