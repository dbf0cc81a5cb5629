"""Attachment download route."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.access import TicketScope
from helpdesk.database import get_db
from helpdesk.dependencies import get_ticket_scope, require_permission
from helpdesk.errors import NotFound
from helpdesk.storage import LocalFileStorage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attachments", tags=["Attachments"])


@router.get("/{attachment_id}/download")
async def download_attachment(
    attachment_id: str,
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    scope: TicketScope = Depends(get_ticket_scope),
    _user: models.UserModel = Depends(require_permission("tickets.view")),
) -> FileResponse:
    """Stream an attachment of a visible ticket under its original file name."""
    attachment = (
        db.query(models.TicketAttachmentModel)
        .filter(
            models.TicketAttachmentModel.id == attachment_id,
            models.TicketAttachmentModel.ticket.has(scope.clause),
        )
        .first()
    )
    if not attachment:
        raise NotFound("Attachment not found", code="attachment_not_found")
    if not storage.exists(attachment.file_storage_path):
        logger.warning("Attachment %s points at missing file %s", attachment.id, attachment.file_storage_path)
        raise NotFound("File not found.", code="file_not_found")
    return FileResponse(storage.absolute_path(attachment.file_storage_path), filename=attachment.file_name)
