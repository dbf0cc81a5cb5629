"""SQLAlchemy models for the helpdesk backend.

Models implemented:
- CompanyModel (tenant; owns the ticket-key namespace through its `code`)
- PermissionModel / RoleModel (role-based permissions, roles scoped to companies)
- UserModel
- TicketModel (soft-deletable, keyed `{company.code}-{n}`)
- TicketCommentModel
- TicketAttachmentModel
- TicketHistoryModel (append-only change log)

Uses SQLAlchemy 2.0 typing (Mapped, mapped_column) and the declarative Base from `helpdesk.database`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Table, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"
    CLOSED = "closed"


class TicketType(str, PyEnum):
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    SPIKE = "spike"


class TicketPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketSeverity(str, PyEnum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    COSMETIC = "cosmetic"


role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

role_companies = Table(
    "role_companies",
    Base.metadata,
    Column("id", Integer, primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("company_id", Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", DateTime(timezone=True), default=_utcnow),
    UniqueConstraint("role_id", "company_id", name="uq_role_companies_role_company"),
)

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class CompanyModel(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    users: Mapped[List["UserModel"]] = relationship("UserModel", back_populates="company")
    roles: Mapped[List["RoleModel"]] = relationship("RoleModel", secondary=role_companies, back_populates="companies")
    tickets: Mapped[List["TicketModel"]] = relationship("TicketModel", back_populates="company")

    def __repr__(self) -> str:
        return f"<Company id={self.id} code={self.code}>"


class PermissionModel(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Permission {self.name}>"


class RoleModel(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    is_assignable: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_on_ticket_create: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_on_ticket_assign: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    permissions: Mapped[List[PermissionModel]] = relationship("PermissionModel", secondary=role_permissions)
    companies: Mapped[List[CompanyModel]] = relationship("CompanyModel", secondary=role_companies, back_populates="roles")
    users: Mapped[List["UserModel"]] = relationship("UserModel", secondary=user_roles, back_populates="roles")

    def __repr__(self) -> str:
        return f"<Role id={self.id} name={self.name}>"


class UserModel(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    position: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profile_photo: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    company_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    company = relationship("CompanyModel", back_populates="users", foreign_keys=[company_id])
    roles: Mapped[List[RoleModel]] = relationship("RoleModel", secondary=user_roles, back_populates="users")
    tickets_reported = relationship("TicketModel", back_populates="reporter", foreign_keys="TicketModel.reporter_id")
    tickets_assigned = relationship("TicketModel", back_populates="assignee", foreign_keys="TicketModel.assignee_id")

    @property
    def role_names(self) -> List[str]:
        return [r.name for r in self.roles]

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return f"<User id={self.id} email={self.email}>"


class TicketModel(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, index=True)
    ticket_key: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), default=TicketType.TASK.value)
    status: Mapped[str] = mapped_column(String(32), default=TicketStatus.OPEN.value, index=True)
    priority: Mapped[str] = mapped_column(String(32), default=TicketPriority.MEDIUM.value)
    severity: Mapped[str] = mapped_column(String(32), default=TicketSeverity.MINOR.value)

    reporter_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assignee_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id"), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    reporter = relationship("UserModel", back_populates="tickets_reported", foreign_keys=[reporter_id])
    assignee = relationship("UserModel", back_populates="tickets_assigned", foreign_keys=[assignee_id])
    company = relationship("CompanyModel", back_populates="tickets", foreign_keys=[company_id])
    comments: Mapped[List["TicketCommentModel"]] = relationship(
        "TicketCommentModel", back_populates="ticket", cascade="all, delete-orphan", passive_deletes=True
    )
    attachments: Mapped[List["TicketAttachmentModel"]] = relationship(
        "TicketAttachmentModel", back_populates="ticket", cascade="all, delete-orphan", passive_deletes=True
    )
    histories: Mapped[List["TicketHistoryModel"]] = relationship(
        "TicketHistoryModel", back_populates="ticket", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} key={self.ticket_key} status={self.status}>"


class TicketCommentModel(Base):
    __tablename__ = "ticket_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, index=True)
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    ticket = relationship("TicketModel", back_populates="comments")
    user = relationship("UserModel")
    attachments: Mapped[List["TicketAttachmentModel"]] = relationship("TicketAttachmentModel", back_populates="comment")

    def __repr__(self) -> str:
        return f"<TicketComment id={self.id} ticket_id={self.ticket_id} user_id={self.user_id}>"


class TicketAttachmentModel(Base):
    __tablename__ = "ticket_attachments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, index=True)
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), index=True, nullable=False)
    comment_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("ticket_comments.id", ondelete="CASCADE"), nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    uploaded_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    ticket = relationship("TicketModel", back_populates="attachments")
    comment = relationship("TicketCommentModel", back_populates="attachments")

    def __repr__(self) -> str:
        return f"<TicketAttachment id={self.id} ticket_id={self.ticket_id} file={self.file_name}>"


class TicketHistoryModel(Base):
    __tablename__ = "ticket_histories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    column_changed: Mapped[str] = mapped_column(String(64), nullable=False)
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)

    # Relationships
    ticket = relationship("TicketModel", back_populates="histories")
    user = relationship("UserModel")

    def __repr__(self) -> str:
        return f"<TicketHistory id={self.id} ticket_id={self.ticket_id} column={self.column_changed}>"


__all__ = [
    "TicketStatus",
    "TicketType",
    "TicketPriority",
    "TicketSeverity",
    "role_permissions",
    "role_companies",
    "user_roles",
    "CompanyModel",
    "PermissionModel",
    "RoleModel",
    "UserModel",
    "TicketModel",
    "TicketCommentModel",
    "TicketAttachmentModel",
    "TicketHistoryModel",
]
