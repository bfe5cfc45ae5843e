"""Data models for the Capture Engine."""

from .capture import (
    PNG_MIME_TYPE,
    PNG_SIGNATURE,
    RETRYABLE_KINDS,
    DeviceProfile,
    ErrorKind,
    CaptureRequest,
    Viewport,
    CapturedImage,
    CaptureFailure,
    CaptureResult,
)

__all__ = [
    "PNG_MIME_TYPE",
    "PNG_SIGNATURE",
    "RETRYABLE_KINDS",
    "DeviceProfile",
    "ErrorKind",
    "CaptureRequest",
    "Viewport",
    "CapturedImage",
    "CaptureFailure",
    "CaptureResult",
]
