"""Seed utilities: default permission catalogue, roles, demo company and users.

`seed_database` is idempotent: existing rows are looked up by their unique
name/email/code and only missing ones are created.
"""
from __future__ import annotations

import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.auth import get_password_hash

logger = logging.getLogger(__name__)

PERMISSIONS: Dict[str, str] = {
    "dashboard.view": "View dashboard",
    "tickets.view": "View tickets",
    "tickets.create": "Create tickets",
    "tickets.edit": "Edit tickets",
    "tickets.delete": "Delete tickets",
    "tickets.assign": "Assign tickets",
    "tickets.close": "Close tickets",
    "users.view": "View users",
    "users.create": "Create users",
    "users.edit": "Edit users",
    "users.delete": "Delete users",
    "roles.view": "View roles",
    "roles.create": "Create roles",
    "roles.edit": "Edit roles",
    "roles.delete": "Delete roles",
    "reports.view": "View reports",
    "reports.export": "Export reports",
    "companies.view": "View companies",
    "companies.create": "Create companies",
    "companies.edit": "Edit companies",
    "companies.delete": "Delete companies",
}

# None means every permission
ROLES: Dict[str, dict] = {
    "Admin": {"permissions": None, "is_assignable": True, "notify_on_ticket_create": True, "notify_on_ticket_assign": True},
    "Tech Support": {
        "permissions": [
            "dashboard.view",
            "tickets.view", "tickets.edit", "tickets.assign", "tickets.close",
            "users.view",
            "companies.view",
        ],
        "is_assignable": True,
        "notify_on_ticket_create": False,
        "notify_on_ticket_assign": True,
    },
    "User": {"permissions": ["dashboard.view", "tickets.view", "tickets.create"]},
}

DEMO_COMPANY = {"name": "Main Company", "code": "MAIN", "description": "Default company created by the seed"}

DEMO_USERS: List[dict] = [
    {"email": "admin@gmail.com", "name": "System Administrator", "password": "admin123", "department": "IT", "position": "System Administrator", "role": "Admin"},
    {"email": "support@gmail.com", "name": "Tech Support", "password": "support123", "department": "IT Support", "position": "Support Engineer", "role": "Tech Support"},
    {"email": "user@gmail.com", "name": "Regular User", "password": "user123", "department": "Sales", "position": "Sales Associate", "role": "User"},
]


def seed_permissions(db: Session) -> Dict[str, models.PermissionModel]:
    existing = {p.name: p for p in db.query(models.PermissionModel).all()}
    for name in PERMISSIONS:
        if name not in existing:
            perm = models.PermissionModel(name=name)
            db.add(perm)
            existing[name] = perm
    db.flush()
    return existing


def seed_database(db: Session) -> dict:
    """Create the default catalogue and demo data where missing. Returns counts created."""
    created = {"permissions": 0, "roles": 0, "companies": 0, "users": 0}

    before = db.query(models.PermissionModel).count()
    permissions = seed_permissions(db)
    created["permissions"] = len(permissions) - before

    roles: Dict[str, models.RoleModel] = {}
    for name, spec in ROLES.items():
        role = db.query(models.RoleModel).filter(models.RoleModel.name == name).first()
        if role is None:
            role = models.RoleModel(
                name=name,
                is_assignable=spec.get("is_assignable", False),
                notify_on_ticket_create=spec.get("notify_on_ticket_create", False),
                notify_on_ticket_assign=spec.get("notify_on_ticket_assign", False),
            )
            wanted = spec["permissions"] if spec["permissions"] is not None else list(PERMISSIONS)
            role.permissions = [permissions[p] for p in wanted]
            db.add(role)
            created["roles"] += 1
        roles[name] = role
    db.flush()

    company = db.query(models.CompanyModel).filter(models.CompanyModel.code == DEMO_COMPANY["code"]).first()
    if company is None:
        company = models.CompanyModel(**DEMO_COMPANY, is_active=True)
        db.add(company)
        db.flush()
        created["companies"] = 1

    for spec in DEMO_USERS:
        if db.query(models.UserModel).filter(models.UserModel.email == spec["email"]).first():
            continue
        user = models.UserModel(
            name=spec["name"],
            email=spec["email"],
            hashed_password=get_password_hash(spec["password"]),
            department=spec["department"],
            position=spec["position"],
            company_id=company.id,
            is_active=True,
        )
        user.roles = [roles[spec["role"]]]
        db.add(user)
        created["users"] += 1

    db.commit()
    logger.info("Seed complete: %s", created)
    return {"status": "ok", "created": created}


__all__ = ["PERMISSIONS", "ROLES", "seed_permissions", "seed_database"]
