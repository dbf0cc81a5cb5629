"""Local-disk file storage for ticket attachments and profile photos.

Stored paths are relative to `UPLOAD_DIR` (e.g. `ticket-attachments/<hex>_report.pdf`)
and are what the database keeps in `file_storage_path` / `profile_photo`.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import BinaryIO, Optional, Union

from helpdesk.errors import StorageFailure, ValidationFailed

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))

ATTACHMENT_DIR = "ticket-attachments"
PROFILE_PHOTO_DIR = "profile-photos"

# Upload limits
MAX_ATTACHMENT_SIZE = int(os.getenv("MAX_ATTACHMENT_SIZE", str(10 * 1024 * 1024)))  # 10 MB
MAX_PHOTO_SIZE = int(os.getenv("MAX_PHOTO_SIZE", str(1024 * 1024)))  # 1 MB
ALLOWED_ATTACHMENT_EXTENSIONS = [
    e.strip().lower() for e in os.getenv("ALLOWED_ATTACHMENT_EXTENSIONS", "jpg,jpeg,png,pdf,doc,docx,txt").split(",") if e.strip()
]
ALLOWED_PHOTO_EXTENSIONS = ["jpg", "jpeg", "png", "gif", "webp"]


def _extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def check_upload(filename: Optional[str], size: int, *, field: str = "attachments", max_size: int = MAX_ATTACHMENT_SIZE, allowed: Optional[list] = None) -> None:
    """Raise ValidationFailed when an upload is too large or of a disallowed type."""
    allowed = ALLOWED_ATTACHMENT_EXTENSIONS if allowed is None else allowed
    name = filename or "file"
    if size > max_size:
        raise ValidationFailed.for_field(field, f"File too large: {name} (max {max_size} bytes)")
    if _extension(name) not in allowed:
        raise ValidationFailed.for_field(field, f"File type not allowed: {name}")


class LocalFileStorage:
    """Stores byte content under a root directory and hands back stable relative paths."""

    def __init__(self, root: Optional[str] = None):
        self.root = os.path.abspath(root or UPLOAD_DIR)

    def absolute_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, path))
        # Ensure path is within the storage root (prevent path traversal)
        if not full.startswith(self.root + os.sep):
            raise ValidationFailed.for_field("path", "Invalid file path")
        return full

    def save(self, content: Union[bytes, BinaryIO], directory: str, filename: str) -> str:
        data = content.read() if hasattr(content, "read") else content
        safe_name = f"{uuid.uuid4().hex}_{os.path.basename(filename or 'file')}"
        rel = f"{directory}/{safe_name}"
        full = self.absolute_path(rel)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as f:
                f.write(data)
        except OSError as exc:
            logger.exception("Failed to write %s", rel)
            raise StorageFailure("File storage is unavailable") from exc
        logger.debug("Stored %d bytes at %s", len(data), rel)
        return rel

    def delete(self, path: str) -> bool:
        """Remove a stored file. Returns False when it was already gone."""
        full = self.absolute_path(path)
        try:
            os.remove(full)
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.exception("Failed to delete %s", path)
            raise StorageFailure("File storage is unavailable") from exc
        return True

    def exists(self, path: str) -> bool:
        return os.path.isfile(self.absolute_path(path))


def get_storage() -> LocalFileStorage:
    """FastAPI dependency; tests override it to point at a temporary directory."""
    return LocalFileStorage()


__all__ = [
    "ATTACHMENT_DIR",
    "PROFILE_PHOTO_DIR",
    "MAX_ATTACHMENT_SIZE",
    "MAX_PHOTO_SIZE",
    "ALLOWED_ATTACHMENT_EXTENSIONS",
    "ALLOWED_PHOTO_EXTENSIONS",
    "check_upload",
    "LocalFileStorage",
    "get_storage",
]
