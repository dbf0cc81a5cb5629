"""Per-company ticket keys (`{company.code}-{n}`) and the ticket creation transaction.

`allocate_ticket_key` must run inside the transaction that inserts the
ticket: it locks the company row (`SELECT ... FOR UPDATE`) so concurrent
creations for the same company serialize, while other companies proceed
independently. Numbers are derived from every existing key with the
company prefix, soft-deleted tickets included, so a number is never handed
out twice. A rolled-back creation simply leaves a gap.

Engines without row locks (SQLite) can still race between the scan and the
insert; the unique constraint on `ticket_key` catches that and
`create_ticket` re-runs the whole unit.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from helpdesk.errors import Conflict, NotFound
from helpdesk.models import CompanyModel, TicketAttachmentModel, TicketModel, UserModel
from helpdesk.storage import ATTACHMENT_DIR, LocalFileStorage

logger = logging.getLogger(__name__)

TICKET_KEY_MAX_ATTEMPTS = int(os.getenv("TICKET_KEY_MAX_ATTEMPTS", "5"))


@dataclass
class UploadedFile:
    filename: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def _is_lock_error(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "lock" in message


def key_number(ticket_key: str, prefix: str) -> Optional[int]:
    """Numeric suffix of `ticket_key` when it is `{prefix}{digits}`, else None."""
    if not ticket_key or not ticket_key.startswith(prefix):
        return None
    rest = ticket_key[len(prefix):]
    return int(rest) if rest.isdigit() else None


def allocate_ticket_key(db: Session, company_id: int) -> str:
    """Lock the company row and return the next unused key for it.

    Raises NotFound for an unknown company and a retryable Conflict when the
    row lock cannot be obtained before the database's lock timeout.
    """
    try:
        company = (
            db.query(CompanyModel)
            .filter(CompanyModel.id == company_id)
            .with_for_update()
            .first()
        )
    except OperationalError as exc:
        if not _is_lock_error(exc):
            raise
        raise Conflict("Timed out waiting for the ticket key lock, please retry", code="ticket_key_conflict", retryable=True) from exc

    if company is None:
        raise NotFound("Company not found", code="company_not_found")

    prefix = f"{company.code}-"
    # No deleted_at filter: tombstoned tickets keep their numbers
    existing = (
        db.query(TicketModel.ticket_key)
        .filter(TicketModel.ticket_key.startswith(prefix, autoescape=True))
        .all()
    )
    numbers = [n for n in (key_number(key, prefix) for (key,) in existing) if n is not None]
    return f"{prefix}{max(numbers, default=0) + 1}"


def _retryable_conflict(exc: Exception) -> Optional[Conflict]:
    if isinstance(exc, Conflict) and exc.retryable:
        return exc
    if isinstance(exc, IntegrityError) and "ticket_key" in str(exc.orig):
        return Conflict("Ticket key already taken, please retry", code="ticket_key_conflict", retryable=True)
    if isinstance(exc, OperationalError) and _is_lock_error(exc):
        return Conflict("Timed out waiting for the ticket key lock, please retry", code="ticket_key_conflict", retryable=True)
    return None


def _discard_files(storage: LocalFileStorage, paths: Sequence[str]) -> None:
    for path in paths:
        try:
            storage.delete(path)
        except Exception:
            logger.exception("Could not remove orphaned upload %s", path)


def _insert_ticket(db: Session, storage: LocalFileStorage, reporter: UserModel, company_id: int, fields: dict, files: Sequence[UploadedFile], stored: List[str]) -> TicketModel:
    ticket_key = allocate_ticket_key(db, company_id)
    now = datetime.now(timezone.utc)
    ticket = TicketModel(
        id=str(uuid.uuid4()),
        ticket_key=ticket_key,
        reporter_id=reporter.id,
        company_id=company_id,
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(ticket)
    # Flush before touching storage so a duplicate key fails fast
    db.flush()

    for upload in files:
        path = storage.save(upload.content, ATTACHMENT_DIR, upload.filename)
        stored.append(path)
        db.add(
            TicketAttachmentModel(
                id=str(uuid.uuid4()),
                ticket_id=ticket.id,
                file_name=os.path.basename(upload.filename or "file"),
                file_storage_path=path,
                file_size_bytes=upload.size,
                uploaded_date=now,
            )
        )
    db.flush()
    return ticket


def create_ticket(
    db: Session,
    storage: LocalFileStorage,
    reporter: UserModel,
    company_id: int,
    fields: dict,
    files: Sequence[UploadedFile] = (),
    max_attempts: Optional[int] = None,
) -> TicketModel:
    """Allocate a key, insert the ticket and its attachments atomically, and commit.

    Any failure rolls the whole unit back and removes files written during the
    attempt. Retryable key conflicts re-run the unit up to `max_attempts`
    times before the Conflict is raised to the caller.
    """
    max_attempts = max_attempts or TICKET_KEY_MAX_ATTEMPTS
    attempt = 0
    while True:
        attempt += 1
        stored: List[str] = []
        try:
            ticket = _insert_ticket(db, storage, reporter, company_id, fields, files, stored)
            db.commit()
        except Exception as exc:
            db.rollback()
            _discard_files(storage, stored)
            conflict = _retryable_conflict(exc)
            if conflict is None:
                raise
            if attempt >= max_attempts:
                logger.error("Ticket key allocation for company %s failed after %d attempts", company_id, attempt)
                if conflict is exc:
                    raise
                raise conflict from exc
            logger.warning("Ticket key conflict for company %s (attempt %d/%d), retrying", company_id, attempt, max_attempts)
            continue

        logger.info("Created ticket %s (%s) for company %s", ticket.ticket_key, ticket.id, company_id)
        return ticket


__all__ = [
    "TICKET_KEY_MAX_ATTEMPTS",
    "UploadedFile",
    "key_number",
    "allocate_ticket_key",
    "create_ticket",
]
