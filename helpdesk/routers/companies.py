"""Company routes: list, create, update and delete tenants.

A company's `code` is the ticket-key prefix for tickets created under it.
Changing the code later leaves existing keys untouched.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.database import get_db
from helpdesk.dependencies import require_permission
from helpdesk.errors import Conflict, NotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/companies", tags=["Companies"])


def get_company_or_404(db: Session, company_id: int) -> models.CompanyModel:
    company = db.query(models.CompanyModel).filter(models.CompanyModel.id == company_id).first()
    if not company:
        raise NotFound("Company not found", code="company_not_found")
    return company


def _ensure_code_free(db: Session, code: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(models.CompanyModel).filter(models.CompanyModel.code == code)
    if exclude_id is not None:
        query = query.filter(models.CompanyModel.id != exclude_id)
    if query.first():
        raise Conflict("Company code already in use", code="company_code_exists")


@router.get("/")
async def list_companies(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _user: models.UserModel = Depends(require_permission("companies.view")),
):
    query = db.query(models.CompanyModel)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(models.CompanyModel.name.like(like), models.CompanyModel.code.like(like)))

    total = query.count()
    companies = query.order_by(models.CompanyModel.name.asc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [schemas.CompanyResponse.model_validate(c) for c in companies],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_company(
    payload: schemas.CompanyCreate,
    db: Session = Depends(get_db),
    current_user: models.UserModel = Depends(require_permission("companies.create")),
):
    _ensure_code_free(db, payload.code)
    company = models.CompanyModel(**payload.model_dump())
    db.add(company)
    db.commit()
    db.refresh(company)
    logger.info("Company %s (%s) created by user %s", company.id, company.code, current_user.id)
    return {"message": "Company created successfully.", "company": schemas.CompanyResponse.model_validate(company)}


@router.patch("/{company_id}")
async def update_company(
    company_id: int,
    payload: schemas.CompanyUpdate,
    db: Session = Depends(get_db),
    _user: models.UserModel = Depends(require_permission("companies.edit")),
):
    company = get_company_or_404(db, company_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("code") and data["code"] != company.code:
        _ensure_code_free(db, data["code"], exclude_id=company.id)
    for field, value in data.items():
        if value is None and field in ("name", "code", "is_active"):
            continue
        setattr(company, field, value)
    db.commit()
    db.refresh(company)
    return {"message": "Company updated successfully.", "company": schemas.CompanyResponse.model_validate(company)}


@router.delete("/{company_id}")
async def delete_company(
    company_id: int,
    db: Session = Depends(get_db),
    _user: models.UserModel = Depends(require_permission("companies.delete")),
):
    company = get_company_or_404(db, company_id)
    if db.query(models.TicketModel).filter(models.TicketModel.company_id == company.id).first():
        raise Conflict("Company still has tickets and cannot be deleted", code="company_has_tickets")
    db.delete(company)
    db.commit()
    logger.info("Company %s deleted", company_id)
    return {"message": "Company deleted successfully."}
