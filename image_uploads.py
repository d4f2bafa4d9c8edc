from __future__ import annotations

import logging
import uuid
from pathlib import Path

from notes_repository import InvalidInputError


logger = logging.getLogger("markdown_notes.uploads")

UPLOADS_URL_PREFIX = "/uploads/"
MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_EXTENSIONS = {
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".webp",
}


class ImageTooLargeError(InvalidInputError):
    pass


def validate_image(filename: str | None, size: int) -> str:
    """Check an upload and return its normalized (lower-case) extension."""

    if not filename or size <= 0:
        raise InvalidInputError("No file uploaded")

    if size > MAX_IMAGE_BYTES:
        raise ImageTooLargeError("File size exceeds 5 MB limit")

    extension = Path(filename).suffix.lower()
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        raise InvalidInputError("Invalid file type. Allowed: jpg, jpeg, png, gif, webp")

    return extension


def save_image(uploads_root: Path, filename: str, data: bytes) -> str:
    extension = validate_image(filename, len(data))
    stored_name = f"{uuid.uuid4().hex}{extension}"

    uploads_root.mkdir(parents=True, exist_ok=True)
    (uploads_root / stored_name).write_bytes(data)

    logger.info("image stored name=%s size=%s", stored_name, len(data))
    return f"{UPLOADS_URL_PREFIX}{stored_name}"


def delete_image(uploads_root: Path, url: str) -> bool:
    """Remove an uploaded image addressed by its ``/uploads/`` URL.

    Returns False when the URL does not point into the uploads directory
    or the file is already gone.
    """

    if not url.startswith(UPLOADS_URL_PREFIX):
        return False

    name = url[len(UPLOADS_URL_PREFIX):]
    if not name or "/" in name or "\\" in name or name in {".", ".."}:
        return False

    target = uploads_root / name
    if not target.is_file():
        return False

    target.unlink()
    logger.info("image deleted name=%s", name)
    return True
