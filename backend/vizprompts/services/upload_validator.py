"""Upload boundary checks, run before any pipeline stage."""

import logging
from typing import Optional

from vizprompts.config import MIB, UploadConfig
from vizprompts.errors import UploadValidationError
from vizprompts.schemas.media import MediaAsset, category_for_mime

logger = logging.getLogger(__name__)


def check_upload_size(size: int, config: UploadConfig) -> None:
    """Reject uploads over the configured limit; the limit itself is allowed."""
    if size > config.max_bytes:
        limit_mib = config.max_bytes // MIB
        raise UploadValidationError(
            f"File is too large. Please upload a file smaller than {limit_mib}MB.",
            details={"size": size, "max_bytes": config.max_bytes},
        )


def validate_upload(
    data: bytes,
    mime_type: Optional[str],
    config: UploadConfig,
    filename: str = "upload",
) -> MediaAsset:
    """Accept one uploaded file or reject it with a user-facing message.

    Args:
        data: Raw file bytes
        mime_type: Declared content type
        config: Size limit and allowed content types
        filename: Original filename, kept for display only

    Returns:
        Validated MediaAsset

    Raises:
        UploadValidationError: Unknown or unsupported content type, empty
            file, or file larger than the configured limit.
    """
    mime_type = (mime_type or "").split(";", 1)[0].strip().lower()
    category = category_for_mime(mime_type)

    allowed = config.allowed_mime_types
    if category is None or (allowed and mime_type not in allowed):
        raise UploadValidationError(
            "Unsupported file type. Please upload a video or image file.",
            details={"mime_type": mime_type, "filename": filename},
        )

    size = len(data)
    check_upload_size(size, config)
    if size == 0:
        raise UploadValidationError("The uploaded file is empty.", details={"filename": filename})

    logger.info(f"Accepted {category} upload {filename!r} ({mime_type}, {size} bytes)")
    return MediaAsset(data=data, mime_type=mime_type, category=category, filename=filename)
