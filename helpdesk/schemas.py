"""Pydantic schemas for the helpdesk API.

Request models validate input before anything is written; response models
read straight from the ORM objects (`from_attributes`).
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from helpdesk.models import TicketPriority, TicketSeverity, TicketStatus, TicketType


# ----------------------------- Companies -----------------------------
class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    is_active: bool = True


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CompanyBrief(BaseModel):
    id: int
    name: str
    code: str

    model_config = {"from_attributes": True}


class CompanyResponse(CompanyBrief):
    description: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# ----------------------------- Users ---------------------------------
class UserBrief(BaseModel):
    id: int
    name: str
    email: str
    profile_photo: Optional[str] = None

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    department: Optional[str] = Field(None, max_length=255)
    position: Optional[str] = Field(None, max_length=255)
    company_id: Optional[int] = None
    role_ids: List[int] = Field(default_factory=list)
    is_active: bool = True


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    department: Optional[str] = Field(None, max_length=255)
    position: Optional[str] = Field(None, max_length=255)
    company_id: Optional[int] = None
    role_ids: Optional[List[int]] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    department: Optional[str] = None
    position: Optional[str] = None
    profile_photo: Optional[str] = None
    company_id: Optional[int] = None
    is_active: bool
    role_names: List[str] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6)


# ----------------------------- Profile -------------------------------
class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    department: Optional[str] = Field(None, max_length=255)
    position: Optional[str] = Field(None, max_length=255)


class PasswordUpdate(BaseModel):
    current_password: str
    password: str = Field(..., min_length=8)
    password_confirmation: str

    @model_validator(mode="after")
    def check_confirmation(self):
        if self.password != self.password_confirmation:
            raise ValueError("password confirmation does not match")
        return self


# ----------------------------- Roles ---------------------------------
class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    is_assignable: bool = False
    notify_on_ticket_create: bool = False
    notify_on_ticket_assign: bool = False
    permissions: List[str] = Field(default_factory=list)
    company_ids: List[int] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    is_assignable: Optional[bool] = None
    notify_on_ticket_create: Optional[bool] = None
    notify_on_ticket_assign: Optional[bool] = None
    permissions: Optional[List[str]] = None
    company_ids: Optional[List[int]] = None


class RoleResponse(BaseModel):
    id: int
    name: str
    is_assignable: bool
    notify_on_ticket_create: bool
    notify_on_ticket_assign: bool
    permissions: List[str]
    companies: List[CompanyBrief]
    users_count: int

    @classmethod
    def from_model(cls, role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            is_assignable=bool(role.is_assignable),
            notify_on_ticket_create=bool(role.notify_on_ticket_create),
            notify_on_ticket_assign=bool(role.notify_on_ticket_assign),
            permissions=sorted(p.name for p in role.permissions),
            companies=[CompanyBrief.model_validate(c) for c in role.companies],
            users_count=len(role.users),
        )


# ----------------------------- Auth ----------------------------------
class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ----------------------------- Tickets -------------------------------
class TicketCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    type: TicketType = TicketType.TASK
    priority: TicketPriority = TicketPriority.MEDIUM
    severity: TicketSeverity = TicketSeverity.MINOR
    company_id: int
    assignee_id: Optional[int] = None


class TicketUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    type: Optional[TicketType] = None
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    severity: Optional[TicketSeverity] = None
    company_id: Optional[int] = None
    assignee_id: Optional[int] = None


class AttachmentResponse(BaseModel):
    id: str
    ticket_id: str
    comment_id: Optional[str] = None
    file_name: str
    file_size_bytes: Optional[int] = None
    uploaded_date: datetime

    model_config = {"from_attributes": True}


class CommentCreate(BaseModel):
    comment_text: str = Field(..., min_length=1, max_length=1000)


class CommentResponse(BaseModel):
    id: str
    ticket_id: str
    user: Optional[UserBrief] = None
    comment_text: str
    created_at: datetime
    attachments: List[AttachmentResponse] = []

    model_config = {"from_attributes": True}


class HistoryResponse(BaseModel):
    id: int
    ticket_id: str
    user: Optional[UserBrief] = None
    column_changed: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_at: datetime

    model_config = {"from_attributes": True}


class TicketResponse(BaseModel):
    id: str
    ticket_key: str
    title: str
    description: Optional[str] = None
    type: str
    status: str
    priority: str
    severity: str
    reporter_id: Optional[int] = None
    assignee_id: Optional[int] = None
    company_id: int
    reporter: Optional[UserBrief] = None
    assignee: Optional[UserBrief] = None
    company: Optional[CompanyBrief] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TicketDetailResponse(TicketResponse):
    comments: List[CommentResponse] = []
    attachments: List[AttachmentResponse] = []

    model_config = {"from_attributes": True}
