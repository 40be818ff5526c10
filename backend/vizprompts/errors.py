"""Exception taxonomy for the media-to-prompt pipeline.

Every stage raises (or, for the normalizer, returns) one of these types;
the session state machine and the API/CLI layers decide what the user
sees based on the class.
"""

from typing import Optional


class VizPromptsError(Exception):
    """Base exception for vizprompts."""

    error_code = "vizprompts_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UploadValidationError(VizPromptsError):
    """Raised when an upload is rejected before any pipeline stage runs."""

    error_code = "upload_invalid"


class UnsupportedMediaError(VizPromptsError):
    """Raised when the MIME category or container cannot be decoded."""

    error_code = "unsupported_media"


class EmptyMediaError(VizPromptsError):
    """Raised when sampling produced zero frames."""

    error_code = "empty_media"


class BackendError(VizPromptsError):
    """Base class for inference backend failures."""

    error_code = "backend_error"


class BackendUnavailableError(BackendError):
    """Transport failure, timeout or non-2xx response from the backend."""

    error_code = "backend_unavailable"


class BackendRefusalError(BackendError):
    """Backend responded but returned no usable text."""

    error_code = "backend_refusal"


class NormalizationError(VizPromptsError):
    """Model output could not be parsed or failed shape validation.

    Carries the raw offending text so callers can show it or build a
    placeholder object from it.
    """

    error_code = "normalization_failed"

    def __init__(self, message: str, raw: str = "", details: Optional[dict] = None):
        super().__init__(message, details)
        self.raw = raw
