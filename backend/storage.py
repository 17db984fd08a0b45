"""
Attachment file storage.

Files live under UPLOAD_DIR at generated, storage-relative paths such as
``attachments/<uuid>.pdf``. Only the relative path is persisted; public
URLs are derived from PUBLIC_STORAGE_URL.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from fastapi import HTTPException, UploadFile, status

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", "./storage"))
PUBLIC_STORAGE_URL = os.environ.get("PUBLIC_STORAGE_URL", "/storage").rstrip("/")

ATTACHMENT_FOLDER = "attachments"
MAX_FILE_SIZE = 2048 * 1024  # 2048 KB
ALLOWED_EXTENSIONS = {"jpg", "png", "pdf", "docx"}
CHUNK_SIZE = 256 * 1024


def validate_file_upload(file: Optional[UploadFile]) -> str:
    """
    Validate presence and extension of an uploaded file.

    Returns:
        The lower-cased extension without the leading dot

    Raises:
        HTTPException: 422 if the file is missing or its type is not allowed
    """
    if file is None or not file.filename:
        logger.info("Upload rejected: no file provided")
        raise HTTPException(
            status_code=422,
            detail="The file field is required.",
        )

    extension = Path(file.filename).suffix.lower().lstrip(".")
    if extension not in ALLOWED_EXTENSIONS:
        logger.info(f"Upload rejected: extension '{extension}' not allowed ({file.filename})")
        raise HTTPException(
            status_code=422,
            detail=f"The file must be a file of type: {', '.join(sorted(ALLOWED_EXTENSIONS))}.",
        )

    return extension


async def save_upload_file(file: UploadFile, extension: str) -> str:
    """
    Stream an uploaded file to storage, enforcing MAX_FILE_SIZE as it goes.

    Nothing is left on disk when the size limit is exceeded or the write fails.

    Returns:
        Storage-relative path of the stored file
    """
    relative_path = f"{ATTACHMENT_FOLDER}/{uuid.uuid4().hex}.{extension}"
    target = resolve_path(relative_path)
    target.parent.mkdir(parents=True, exist_ok=True)

    total_size = 0
    try:
        with open(target, "wb") as f:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break

                total_size += len(chunk)
                if total_size > MAX_FILE_SIZE:
                    raise HTTPException(
                        status_code=422,
                        detail=f"The file may not be greater than {MAX_FILE_SIZE // 1024} kilobytes.",
                    )

                f.write(chunk)
    except HTTPException:
        target.unlink(missing_ok=True)
        logger.info(f"Upload rejected: {file.filename} exceeds {MAX_FILE_SIZE} bytes")
        raise
    except OSError as e:
        target.unlink(missing_ok=True)
        logger.error(f"Failed to store file {file.filename}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store file",
        )

    logger.debug(f"Stored {file.filename} at {relative_path} ({total_size} bytes)")
    return relative_path


def resolve_path(relative_path: str) -> Path:
    """Map a storage-relative path to its location on disk."""
    return UPLOAD_DIR / relative_path


def delete_stored_file(relative_path: str) -> bool:
    """
    Remove a stored file.

    Returns:
        True if the file is gone afterwards, False if removal failed
    """
    try:
        resolve_path(relative_path).unlink(missing_ok=True)
    except OSError as e:
        logger.error(f"Failed to delete stored file {relative_path}: {e}")
        return False

    logger.debug(f"Deleted stored file {relative_path}")
    return True


def public_url(relative_path: str) -> str:
    return f"{PUBLIC_STORAGE_URL}/{relative_path}"
