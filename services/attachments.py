"""
Image attachments for delivery chat.

Uploads are checked for size, extension and content type, then decoded with
Pillow before anything touches the disk. The returned path is what chat
messages carry; nothing else interprets it.
"""
import io
import uuid
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from core.config import settings
from core.exceptions import ValidationError
from schemas.chat import AttachmentResponse

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}

# Pillow format name -> (mime type, extension written to disk)
PILLOW_FORMATS = {
    "JPEG": ("image/jpeg", ".jpg"),
    "PNG": ("image/png", ".png"),
    "WEBP": ("image/webp", ".webp"),
}


def chat_attachment_dir() -> Path:
    return Path(settings.UPLOAD_DIR) / "chat"


def validate_attachment(filename: Optional[str], content_type: Optional[str], size: int) -> None:
    """Validate upload metadata before decoding"""
    if size == 0:
        raise ValidationError("Uploaded file is empty", field="file")

    if size > settings.MAX_ATTACHMENT_SIZE:
        raise ValidationError(
            f"File size too large. Maximum size allowed is {settings.MAX_ATTACHMENT_SIZE // (1024 * 1024)}MB",
            field="file"
        )

    if filename:
        file_ext = Path(filename).suffix.lower()
        if file_ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
                field="file"
            )

    if content_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Invalid content type. Allowed types: {', '.join(sorted(ALLOWED_MIME_TYPES))}",
            field="file"
        )


def store_attachment(content: bytes, filename: Optional[str], content_type: Optional[str],
                     delivery_id: str) -> AttachmentResponse:
    """Verify an uploaded image and write it under the chat upload directory."""
    validate_attachment(filename, content_type, len(content))

    try:
        with Image.open(io.BytesIO(content)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.warning(f"Rejected unreadable attachment for delivery {delivery_id}: {str(e)}")
        raise ValidationError("File is not a valid image", field="file")

    if image_format not in PILLOW_FORMATS:
        raise ValidationError("Unsupported image format", field="file")

    detected_type, extension = PILLOW_FORMATS[image_format]

    target_dir = chat_attachment_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    name = f"{delivery_id}_{uuid.uuid4().hex}{extension}"
    (target_dir / name).write_bytes(content)

    logger.info(f"Stored chat attachment {name} ({detected_type}, {len(content)} bytes)")
    return AttachmentResponse(path=f"/uploads/chat/{name}", content_type=detected_type)
