"""
File storage for task attachments - bytes on disk under UPLOAD_DIR.

The database only records the association (see task_store.attach_files).
"""
import logging
import mimetypes
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from taskboard.config import get_settings
from taskboard.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {
    ".txt", ".csv", ".json", ".md", ".xml",
    ".pdf", ".xlsx", ".xls", ".docx", ".doc", ".pptx",
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".zip",
}


@dataclass(frozen=True)
class StoredFile:
    filename: str
    original_name: str
    mime_type: Optional[str]
    size: int


def _upload_dir() -> str:
    return get_settings().UPLOAD_DIR


def resolve_path(filename: str) -> str:
    """Absolute path of a stored file, refusing names that escape UPLOAD_DIR"""
    base = os.path.realpath(_upload_dir())
    path = os.path.realpath(os.path.join(base, filename))
    if os.path.commonpath([base, path]) != base:
        raise ValidationError("Invalid attachment path")
    return path


def _clean_name(original_name: Optional[str]) -> str:
    return os.path.basename(original_name or "file") or "file"


def validate_attachment(original_name: Optional[str], size: int) -> str:
    """Check extension and size; returns the lower-cased extension"""
    settings = get_settings()
    ext = os.path.splitext(_clean_name(original_name))[1].lower()
    if ext and ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"File type '{ext}' not allowed.")
    if size > settings.MAX_FILE_SIZE:
        raise ValidationError(f"File too large. Maximum size: {settings.MAX_FILE_SIZE // (1024 * 1024)}MB")
    return ext


def store_attachment(data: bytes, original_name: str, mime_type: Optional[str] = None) -> StoredFile:
    """Write attachment bytes under a unique name and return the reference"""
    original_name = _clean_name(original_name)
    ext = validate_attachment(original_name, len(data))

    os.makedirs(_upload_dir(), exist_ok=True)
    filename = f"{uuid.uuid4().hex}{ext}"
    with open(resolve_path(filename), "wb") as f:
        f.write(data)

    logger.info(f"Stored attachment '{original_name}' as {filename} ({len(data)} bytes)")
    return StoredFile(
        filename=filename,
        original_name=original_name,
        mime_type=mime_type or mimetypes.guess_type(original_name)[0],
        size=len(data),
    )


def remove_attachment(filename: str) -> None:
    """Delete stored bytes; a missing file is not an error"""
    try:
        path = resolve_path(filename)
        if os.path.exists(path):
            os.remove(path)
    except (OSError, ValidationError) as e:
        logger.warning(f"Could not remove attachment {filename}: {e}")
