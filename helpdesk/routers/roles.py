"""Role routes: CRUD for roles, their permissions and their company scope."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session, selectinload

from helpdesk import models, schemas
from helpdesk.database import get_db
from helpdesk.dependencies import require_permission
from helpdesk.errors import Conflict, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/roles", tags=["Roles"])


def get_role_or_404(db: Session, role_id: int) -> models.RoleModel:
    role = db.query(models.RoleModel).filter(models.RoleModel.id == role_id).first()
    if not role:
        raise NotFound("Role not found", code="role_not_found")
    return role


def _resolve_permissions(db: Session, names: List[str]) -> List[models.PermissionModel]:
    names = sorted(set(names))
    found = db.query(models.PermissionModel).filter(models.PermissionModel.name.in_(names)).all() if names else []
    missing = set(names) - {p.name for p in found}
    if missing:
        raise ValidationFailed.for_field("permissions", f"Unknown permission(s): {', '.join(sorted(missing))}")
    return found


def _resolve_companies(db: Session, ids: List[int]) -> List[models.CompanyModel]:
    ids = sorted(set(ids))
    found = db.query(models.CompanyModel).filter(models.CompanyModel.id.in_(ids)).all() if ids else []
    missing = set(ids) - {c.id for c in found}
    if missing:
        raise ValidationFailed.for_field("company_ids", f"Unknown company id(s): {', '.join(str(i) for i in sorted(missing))}")
    return found


def _ensure_name_free(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(models.RoleModel).filter(models.RoleModel.name == name)
    if exclude_id is not None:
        query = query.filter(models.RoleModel.id != exclude_id)
    if query.first():
        raise Conflict("Role name already in use", code="role_name_exists")


@router.get("/permissions")
async def list_permissions(db: Session = Depends(get_db), _user: models.UserModel = Depends(require_permission("roles.view"))):
    """Permission catalogue grouped by area (`tickets`, `users`, ...)."""
    groups: dict = {}
    for perm in db.query(models.PermissionModel).order_by(models.PermissionModel.name).all():
        area = perm.name.split(".", 1)[0]
        groups.setdefault(area, []).append(perm.name)
    return {"data": groups}


@router.get("/")
async def list_roles(db: Session = Depends(get_db), _user: models.UserModel = Depends(require_permission("roles.view"))):
    roles = (
        db.query(models.RoleModel)
        .options(selectinload(models.RoleModel.permissions), selectinload(models.RoleModel.companies), selectinload(models.RoleModel.users))
        .order_by(models.RoleModel.name)
        .all()
    )
    return {"data": [schemas.RoleResponse.from_model(r) for r in roles]}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: schemas.RoleCreate,
    db: Session = Depends(get_db),
    current_user: models.UserModel = Depends(require_permission("roles.create")),
):
    _ensure_name_free(db, payload.name)
    role = models.RoleModel(
        name=payload.name,
        is_assignable=payload.is_assignable,
        notify_on_ticket_create=payload.notify_on_ticket_create,
        notify_on_ticket_assign=payload.notify_on_ticket_assign,
    )
    role.permissions = _resolve_permissions(db, payload.permissions)
    role.companies = _resolve_companies(db, payload.company_ids)
    db.add(role)
    db.commit()
    db.refresh(role)
    logger.info("Role %s created by user %s", role.name, current_user.id)
    return {"message": "Role created successfully.", "role": schemas.RoleResponse.from_model(role)}


@router.patch("/{role_id}")
async def update_role(
    role_id: int,
    payload: schemas.RoleUpdate,
    db: Session = Depends(get_db),
    _user: models.UserModel = Depends(require_permission("roles.edit")),
):
    role = get_role_or_404(db, role_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name") and data["name"] != role.name:
        _ensure_name_free(db, data["name"], exclude_id=role.id)
        role.name = data["name"]
    for flag in ("is_assignable", "notify_on_ticket_create", "notify_on_ticket_assign"):
        if data.get(flag) is not None:
            setattr(role, flag, data[flag])
    if data.get("permissions") is not None:
        role.permissions = _resolve_permissions(db, data["permissions"])
    if data.get("company_ids") is not None:
        role.companies = _resolve_companies(db, data["company_ids"])

    db.commit()
    db.refresh(role)
    return {"message": "Role updated successfully.", "role": schemas.RoleResponse.from_model(role)}


@router.delete("/{role_id}")
async def delete_role(
    role_id: int,
    db: Session = Depends(get_db),
    _user: models.UserModel = Depends(require_permission("roles.delete")),
):
    role = get_role_or_404(db, role_id)
    if role.users:
        raise Conflict("Cannot delete role with assigned users.", code="role_in_use")
    db.delete(role)
    db.commit()
    logger.info("Role %s deleted", role_id)
    return {"message": "Role deleted successfully."}
