from __future__ import annotations

import logging
import mimetypes
import uuid
from datetime import datetime, timezone
from pathlib import Path

from autofill_relay.errors import InvalidInputError, PayloadTooLargeError, UnsupportedMediaError

logger = logging.getLogger(__name__)

IMAGE_MAGIC_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
]


def detect_image_mime_type(*, filename: str, content_type: str | None, content_bytes: bytes) -> str | None:
    for signature, mime in IMAGE_MAGIC_SIGNATURES:
        if content_bytes.startswith(signature):
            return mime
    if content_bytes.startswith(b"RIFF") and content_bytes[8:12] == b"WEBP":
        return "image/webp"

    normalized_content_type = (content_type or "").split(";")[0].strip().lower()
    if normalized_content_type.startswith("image/"):
        return normalized_content_type

    guessed_mime, _ = mimetypes.guess_type(filename)
    if guessed_mime and guessed_mime.startswith("image/"):
        return guessed_mime
    return None


def validate_upload(
    filename: str,
    content_type: str | None,
    content_bytes: bytes,
    *,
    max_bytes: int,
) -> str:
    """Check an uploaded file and return its image MIME type."""
    if not content_bytes:
        raise InvalidInputError("No file uploaded")

    if len(content_bytes) > max_bytes:
        raise PayloadTooLargeError(f"File exceeds the {max_bytes // (1024 * 1024)}MB limit.")

    mime_type = detect_image_mime_type(
        filename=filename,
        content_type=content_type,
        content_bytes=content_bytes,
    )
    if mime_type is None:
        raise UnsupportedMediaError("Only image files are allowed!")
    return mime_type


def store_upload(upload_dir: Path, filename: str, content_bytes: bytes) -> Path:
    upload_dir.mkdir(parents=True, exist_ok=True)
    extension = Path(filename).suffix.lower()
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    stored_path = upload_dir / f"{stamp}_{uuid.uuid4().hex[:8]}{extension}"
    stored_path.write_bytes(content_bytes)
    return stored_path


def remove_upload(path: Path | None) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove stored upload %s: %s", path, exc)
