"""Self-service profile routes for the authenticated user."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.auth import get_current_user, get_password_hash, verify_password
from helpdesk.database import get_db
from helpdesk.errors import Conflict, ValidationFailed
from helpdesk.storage import ALLOWED_PHOTO_EXTENSIONS, MAX_PHOTO_SIZE, PROFILE_PHOTO_DIR, LocalFileStorage, check_upload, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Profile"])


@router.get("/", response_model=schemas.UserResponse)
async def get_profile(current_user: models.UserModel = Depends(get_current_user)) -> schemas.UserResponse:
    return schemas.UserResponse.model_validate(current_user)


@router.patch("/", response_model=schemas.UserResponse)
async def update_profile(
    payload: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: models.UserModel = Depends(get_current_user),
) -> schemas.UserResponse:
    data = payload.model_dump(exclude_unset=True)
    email = data.get("email")
    if email and email != current_user.email:
        taken = db.query(models.UserModel).filter(models.UserModel.email == email, models.UserModel.id != current_user.id).first()
        if taken:
            raise Conflict("Email already in use", code="email_in_use")
    for field, value in data.items():
        if value is None and field in ("name", "email"):
            continue
        setattr(current_user, field, value)
    db.commit()
    db.refresh(current_user)
    return schemas.UserResponse.model_validate(current_user)


@router.post("/photo", response_model=schemas.UserResponse)
async def upload_photo(
    photo: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    current_user: models.UserModel = Depends(get_current_user),
) -> schemas.UserResponse:
    """Replace the profile photo; the previous file is removed once the new one is saved."""
    content = await photo.read()
    check_upload(photo.filename, len(content), field="photo", max_size=MAX_PHOTO_SIZE, allowed=ALLOWED_PHOTO_EXTENSIONS)

    previous = current_user.profile_photo
    current_user.profile_photo = storage.save(content, PROFILE_PHOTO_DIR, photo.filename)
    db.commit()
    db.refresh(current_user)

    if previous:
        try:
            storage.delete(previous)
        except Exception:
            logger.exception("Could not remove previous profile photo %s", previous)
    return schemas.UserResponse.model_validate(current_user)


@router.put("/password")
async def update_password(
    payload: schemas.PasswordUpdate,
    db: Session = Depends(get_db),
    current_user: models.UserModel = Depends(get_current_user),
):
    if not verify_password(payload.current_password, current_user.hashed_password):
        raise ValidationFailed.for_field("current_password", "The provided password does not match your current password.")
    current_user.hashed_password = get_password_hash(payload.password)
    db.commit()
    logger.info("User %s changed their password", current_user.id)
    return {"message": "Password updated successfully."}
