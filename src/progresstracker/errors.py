"""
Error classification for progresstracker.

Every error raised by the package derives from ``ProgressTrackerError`` and
carries a category, a severity, a machine-readable code and a message that
can be shown to the user as-is. Subclasses only declare their defaults.
Errors log themselves when created.

Per-file errors (validation, conversion, decode, render) drop one file from
an upload batch; storage errors stop the batch; format errors reject an
import as a whole.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from progresstracker.logging_config import log_error


class ErrorCategory(Enum):
    VALIDATION = "validation"
    CONVERSION = "conversion"
    IMAGE_PROCESSING = "image_processing"
    STORAGE = "storage"
    IMPORT = "import"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorInfo:
    """Snapshot of an error suitable for JSON output."""

    category: ErrorCategory
    severity: ErrorSeverity
    code: str
    message: str
    user_message: str
    details: dict[str, Any]
    timestamp: datetime
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
        }


class ProgressTrackerError(Exception):
    """Base exception class for progresstracker."""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.MEDIUM
    default_code: str | None = None
    default_user_message = "An unexpected error occurred."
    default_recoverable = True

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool | None = None,
        original_exception: Exception | None = None,
    ):
        super().__init__(message)
        self.code = code or self.default_code or f"{self.category.value}_error"
        self.user_message = user_message or self.default_user_message
        self.details = details or {}
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.original_exception = original_exception
        self.timestamp = datetime.now()

        self._log_error()

    def _log_error(self) -> None:
        error_context = {
            "category": self.category.value,
            "severity": self.severity.value,
            "code": self.code,
            "recoverable": self.recoverable,
            **self.details,
        }
        if self.original_exception:
            error_context["original_exception"] = str(self.original_exception)

        log_error(self, error_context)

    def get_error_info(self) -> ErrorInfo:
        """Get structured error information."""
        return ErrorInfo(
            category=self.category,
            severity=self.severity,
            code=self.code,
            message=str(self),
            user_message=self.user_message,
            details=self.details,
            timestamp=self.timestamp,
            recoverable=self.recoverable,
        )


class ValidationError(ProgressTrackerError):
    """A selected file or a record failed validation."""

    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW
    default_code = "validation_failed"
    default_user_message = "Please select a valid image file (JPG, PNG, WebP or HEIC)."


class ConversionError(ProgressTrackerError):
    """A camera-format image could not be converted to JPEG."""

    category = ErrorCategory.CONVERSION
    default_code = "conversion_failed"
    default_user_message = "Failed to convert the HEIC image. Try exporting it as JPEG first."


class ImageProcessingError(ProgressTrackerError):
    category = ErrorCategory.IMAGE_PROCESSING
    default_code = "image_processing_failed"
    default_user_message = "The image could not be processed. Please check the file."


class DecodeError(ImageProcessingError):
    """The input bytes are not a decodable image."""

    default_code = "image_decode_failed"
    default_user_message = "Failed to load image."


class RenderError(ImageProcessingError):
    """The image decoded but could not be resized or encoded."""

    default_code = "image_render_failed"
    default_user_message = "Failed to render the image."


class StorageError(ProgressTrackerError):
    category = ErrorCategory.STORAGE
    severity = ErrorSeverity.HIGH
    default_code = "storage_error"
    default_user_message = "Failed to save the photo. Please try again."


class StorageQuotaError(StorageError):
    """The store has no room left for the record being written."""

    default_code = "storage_quota_exceeded"
    default_user_message = "Storage is full. Delete some photos or export a backup first."
    default_recoverable = False


class FormatError(ProgressTrackerError):
    """An export envelope is missing its version or image list."""

    category = ErrorCategory.IMPORT
    default_code = "invalid_export_format"
    default_user_message = "Invalid export file format."
