"""Ticket routes: listing, creation with attachments, updates with history, comments.

Every lookup goes through the caller's `TicketScope`: a ticket outside the
scope answers 404 exactly like a missing one.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple, Type

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload
from starlette.datastructures import UploadFile as StarletteUploadFile

from helpdesk import models, schemas
from helpdesk.access import TicketScope
from helpdesk.database import get_db
from helpdesk.dependencies import get_ticket_scope, require_permission
from helpdesk.errors import Forbidden, NotFound, StorageFailure, ValidationFailed
from helpdesk.history import apply_ticket_changes
from helpdesk.notifications import (
    NotificationDispatcher,
    get_dispatcher,
    schedule,
    ticket_assigned_recipients,
    ticket_commented_recipients,
    ticket_created_recipients,
    ticket_payload,
)
from helpdesk.storage import ATTACHMENT_DIR, LocalFileStorage, check_upload, get_storage
from helpdesk.ticket_keys import UploadedFile, create_ticket as create_ticket_with_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["Tickets"])


class _AttachmentsForm(BaseModel):
    """Attachment uploads carry no fields besides the files."""


async def _read_payload(request: Request, schema: Type[BaseModel]) -> Tuple[BaseModel, List[UploadedFile]]:
    """Parse a JSON or multipart/form-data body into `schema` plus uploaded `attachments`.

    Attachment size/type checks run here, before any database work.
    """
    content_type = request.headers.get("content-type", "")
    files: List[UploadedFile] = []
    if content_type.startswith("multipart/form-data") or content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        data = {k: v for k, v in form.items() if k != "attachments" and not isinstance(v, StarletteUploadFile)}
        # Empty form fields mean "not provided"
        data = {k: v for k, v in data.items() if v != ""}
        for upload in form.getlist("attachments"):
            if not isinstance(upload, StarletteUploadFile) or not upload.filename:
                continue
            content = await upload.read()
            check_upload(upload.filename, len(content))
            files.append(UploadedFile(filename=upload.filename, content=content))
        logger.debug("Parsed %d file(s) from form", len(files))
    else:
        try:
            data = await request.json()
        except ValueError:
            raise ValidationFailed.for_field("body", "Request body must be JSON or multipart/form-data")

    try:
        payload = schema.model_validate(data)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))
    return payload, files


def get_visible_ticket(db: Session, scope: TicketScope, ticket_id: str) -> models.TicketModel:
    ticket = scope.get_ticket(db, ticket_id)
    if not ticket:
        raise NotFound("Ticket not found", code="ticket_not_found")
    return ticket


def _check_company(db: Session, scope: TicketScope, company_id: int) -> models.CompanyModel:
    company = db.get(models.CompanyModel, company_id)
    if company is None:
        raise ValidationFailed.for_field("company_id", "Unknown company")
    if company_id not in scope.allowed_company_ids:
        raise Forbidden("You cannot file tickets for this company", code="company_not_allowed")
    if not company.is_active:
        raise ValidationFailed.for_field("company_id", "Company is inactive")
    return company


def _check_assignee(db: Session, assignee_id: Optional[int]) -> None:
    if assignee_id is None:
        return
    assignee = db.get(models.UserModel, assignee_id)
    if assignee is None or not assignee.is_active:
        raise ValidationFailed.for_field("assignee_id", "Unknown or inactive assignee")


def _store_attachments(db: Session, storage: LocalFileStorage, ticket: models.TicketModel, files: Sequence[UploadedFile], stored: List[str], comment_id: Optional[str] = None) -> None:
    """Write files and add attachment rows, appending each path to `stored` as soon as it is on disk."""
    now = datetime.now(timezone.utc)
    for upload in files:
        path = storage.save(upload.content, ATTACHMENT_DIR, upload.filename)
        stored.append(path)
        db.add(
            models.TicketAttachmentModel(
                id=str(uuid.uuid4()),
                ticket_id=ticket.id,
                comment_id=comment_id,
                file_name=upload.filename,
                file_storage_path=path,
                file_size_bytes=upload.size,
                uploaded_date=now,
            )
        )


def _rollback_with_files(db: Session, storage: LocalFileStorage, stored: Sequence[str]) -> None:
    db.rollback()
    for path in stored:
        try:
            storage.delete(path)
        except Exception:
            logger.exception("Could not remove orphaned upload %s", path)


@router.get("/")
async def list_tickets(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    scope: TicketScope = Depends(get_ticket_scope),
    _user: models.UserModel = Depends(require_permission("tickets.view")),
):
    """List visible tickets, newest first.

    `status` is `all` (default), `my_tickets`, `unassigned` or a ticket status.
    `search` matches title, description or ticket key.
    """
    user = scope.user
    query = scope.tickets(db)

    if status_filter and status_filter != "all":
        if status_filter == "my_tickets":
            if scope.reporter_only:
                query = query.filter(models.TicketModel.reporter_id == user.id)
            else:
                query = query.filter(models.TicketModel.assignee_id == user.id)
        elif status_filter == "unassigned":
            query = query.filter(models.TicketModel.assignee_id.is_(None))
        else:
            query = query.filter(models.TicketModel.status == status_filter)

    if search:
        # `%` and `_` typed by the user match literally
        query = query.filter(
            or_(
                models.TicketModel.title.contains(search, autoescape=True),
                models.TicketModel.description.contains(search, autoescape=True),
                models.TicketModel.ticket_key.contains(search, autoescape=True),
            )
        )

    total = query.count()
    tickets = (
        query.options(joinedload(models.TicketModel.reporter), joinedload(models.TicketModel.assignee), joinedload(models.TicketModel.company))
        .order_by(models.TicketModel.created_at.desc(), models.TicketModel.ticket_key.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "data": [schemas.TicketResponse.model_validate(t) for t in tickets],
        "pagination": {
            "page": page,
            "limit": per_page,
            "total": total,
            "totalPages": (total + per_page - 1) // per_page,
        },
        "filters": {"status": status_filter, "search": search},
    }


@router.get("/options")
async def ticket_form_options(
    db: Session = Depends(get_db),
    scope: TicketScope = Depends(get_ticket_scope),
    _user: models.UserModel = Depends(require_permission("tickets.view")),
):
    """Assignable staff (holders of `tickets.edit`) and the active companies the caller may file under."""
    staff = (
        db.query(models.UserModel)
        .filter(
            models.UserModel.is_active.is_(True),
            models.UserModel.roles.any(models.RoleModel.permissions.any(models.PermissionModel.name == "tickets.edit")),
        )
        .order_by(models.UserModel.name)
        .all()
    )
    companies = (
        db.query(models.CompanyModel)
        .filter(models.CompanyModel.is_active.is_(True), models.CompanyModel.id.in_(sorted(scope.allowed_company_ids)))
        .order_by(models.CompanyModel.name)
        .all()
    )
    return {
        "staff": [{"id": u.id, "name": u.name} for u in staff],
        "companies": [{"id": c.id, "name": c.name} for c in companies],
        "types": [t.value for t in models.TicketType],
        "statuses": [s.value for s in models.TicketStatus],
        "priorities": [p.value for p in models.TicketPriority],
        "severities": [s.value for s in models.TicketSeverity],
    }


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_ticket(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    scope: TicketScope = Depends(get_ticket_scope),
    current_user: models.UserModel = Depends(require_permission("tickets.create")),
):
    """Create a ticket from a JSON body or multipart/form-data with optional `attachments`.

    The ticket gets the next `{company.code}-{n}` key; ticket, key and
    attachments are committed together or not at all.
    """
    payload, files = await _read_payload(request, schemas.TicketCreate)
    _check_company(db, scope, payload.company_id)
    _check_assignee(db, payload.assignee_id)

    fields = payload.model_dump(mode="json", exclude={"company_id"})
    ticket = create_ticket_with_key(db, storage, current_user, payload.company_id, fields, files)

    schedule(background_tasks, dispatcher, "ticket_created", ticket_created_recipients(db, ticket), {"ticket": ticket_payload(ticket)})
    return {"message": "Ticket created successfully.", "ticket": schemas.TicketDetailResponse.model_validate(ticket)}


@router.get("/{ticket_id}", response_model=schemas.TicketDetailResponse)
async def get_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    scope: TicketScope = Depends(get_ticket_scope),
    _user: models.UserModel = Depends(require_permission("tickets.view")),
) -> schemas.TicketDetailResponse:
    ticket = get_visible_ticket(db, scope, ticket_id)
    detail = schemas.TicketDetailResponse.model_validate(ticket)
    detail.comments.sort(key=lambda c: c.created_at, reverse=True)
    return detail


@router.patch("/{ticket_id}", response_model=schemas.TicketResponse)
async def update_ticket(
    ticket_id: str,
    payload: schemas.TicketUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    scope: TicketScope = Depends(get_ticket_scope),
    current_user: models.UserModel = Depends(require_permission("tickets.edit")),
) -> schemas.TicketResponse:
    """Apply a partial update; every changed column is written to the ticket history."""
    ticket = get_visible_ticket(db, scope, ticket_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    for required in ("title", "type", "status", "priority", "severity", "company_id"):
        if required in changes and changes[required] is None:
            raise ValidationFailed.for_field(required, "This field cannot be null")

    if "company_id" in changes and changes["company_id"] != ticket.company_id:
        _check_company(db, scope, changes["company_id"])
    if changes.get("assignee_id") is not None:
        _check_assignee(db, changes["assignee_id"])

    previous_assignee = ticket.assignee_id
    entries = apply_ticket_changes(db, ticket, changes, current_user)
    db.commit()
    db.refresh(ticket)
    logger.info("Ticket %s updated by user %s (%d change(s))", ticket.ticket_key, current_user.id, len(entries))

    if ticket.assignee_id is not None and ticket.assignee_id != previous_assignee:
        schedule(background_tasks, dispatcher, "ticket_assigned", ticket_assigned_recipients(ticket), {"ticket": ticket_payload(ticket)})
    return schemas.TicketResponse.model_validate(ticket)


@router.delete("/{ticket_id}")
async def delete_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    scope: TicketScope = Depends(get_ticket_scope),
    current_user: models.UserModel = Depends(require_permission("tickets.delete")),
):
    """Soft-delete the ticket, then remove its stored attachment files. The key stays reserved."""
    ticket = get_visible_ticket(db, scope, ticket_id)
    paths = [attachment.file_storage_path for attachment in ticket.attachments]
    ticket.deleted_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("Ticket %s soft-deleted by user %s", ticket.ticket_key, current_user.id)

    # The ticket is already gone for readers; a file left behind is only logged
    for path in paths:
        try:
            storage.delete(path)
        except StorageFailure:
            logger.exception("Could not remove attachment %s of deleted ticket %s", path, ticket.ticket_key)
    return {"message": "Ticket deleted successfully."}


@router.get("/{ticket_id}/history")
async def ticket_history(
    ticket_id: str,
    db: Session = Depends(get_db),
    scope: TicketScope = Depends(get_ticket_scope),
    _user: models.UserModel = Depends(require_permission("tickets.view")),
):
    ticket = get_visible_ticket(db, scope, ticket_id)
    entries = (
        db.query(models.TicketHistoryModel)
        .options(joinedload(models.TicketHistoryModel.user))
        .filter(models.TicketHistoryModel.ticket_id == ticket.id)
        .order_by(models.TicketHistoryModel.changed_at.desc(), models.TicketHistoryModel.id.desc())
        .all()
    )
    return {"data": [schemas.HistoryResponse.model_validate(e) for e in entries]}


@router.post("/{ticket_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    scope: TicketScope = Depends(get_ticket_scope),
    current_user: models.UserModel = Depends(require_permission("tickets.view")),
):
    """Add a comment (JSON or multipart with optional `attachments`) to a visible ticket."""
    ticket = get_visible_ticket(db, scope, ticket_id)
    payload, files = await _read_payload(request, schemas.CommentCreate)

    now = datetime.now(timezone.utc)
    comment = models.TicketCommentModel(
        id=str(uuid.uuid4()),
        ticket_id=ticket.id,
        user_id=current_user.id,
        comment_text=payload.comment_text,
        created_at=now,
        updated_at=now,
    )
    stored: List[str] = []
    try:
        db.add(comment)
        db.flush()
        _store_attachments(db, storage, ticket, files, stored, comment_id=comment.id)
        db.commit()
    except Exception:
        _rollback_with_files(db, storage, stored)
        raise
    db.refresh(comment)

    data = {
        "ticket": ticket_payload(ticket),
        "comment": {"author": current_user.name, "text": comment.comment_text},
    }
    schedule(background_tasks, dispatcher, "ticket_commented", ticket_commented_recipients(ticket, comment), data)
    return {"message": "Comment added successfully.", "comment": schemas.CommentResponse.model_validate(comment)}


@router.post("/{ticket_id}/attachments", status_code=status.HTTP_201_CREATED)
async def add_attachments(
    ticket_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    scope: TicketScope = Depends(get_ticket_scope),
    _user: models.UserModel = Depends(require_permission("tickets.view")),
):
    ticket = get_visible_ticket(db, scope, ticket_id)
    _, files = await _read_payload(request, _AttachmentsForm)
    if not files:
        raise ValidationFailed.for_field("attachments", "At least one file is required")

    stored: List[str] = []
    try:
        _store_attachments(db, storage, ticket, files, stored)
        db.commit()
    except Exception:
        _rollback_with_files(db, storage, stored)
        raise

    attachments = (
        db.query(models.TicketAttachmentModel)
        .filter(models.TicketAttachmentModel.file_storage_path.in_(stored))
        .all()
    )
    return {"message": "Attachments uploaded successfully.", "attachments": [schemas.AttachmentResponse.model_validate(a) for a in attachments]}

