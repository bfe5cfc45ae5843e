"""Pydantic models for capture requests, viewports and capture results.

This module defines the data models used by the Capture Engine: the request
a caller hands in, the viewport the request resolves to, and the terminal
result (either PNG image bytes or a classified failure).
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


PNG_MIME_TYPE = "image/png"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class DeviceProfile(str, Enum):
    """Device classes a capture can emulate."""
    DESKTOP = "desktop"
    TABLET = "tablet"
    MOBILE = "mobile"
    CUSTOM = "custom"


class ErrorKind(str, Enum):
    """Classification of every failure the engine can return."""
    INVALID_REQUEST = "InvalidRequest"
    LAUNCH_FAILURE = "LaunchFailure"
    SESSION_UNAVAILABLE = "SessionUnavailable"
    NAVIGATION_TIMEOUT = "NavigationTimeout"
    NAVIGATION_FAILURE = "NavigationFailure"
    CONTENT_NOT_READY = "ContentNotReady"
    CAPTURE_FAILURE = "CaptureFailure"
    CAPACITY_EXCEEDED = "CapacityExceeded"
    INTERNAL_FAULT = "InternalFault"


# Failures where a fresh attempt with a new session can reasonably succeed.
RETRYABLE_KINDS = frozenset({
    ErrorKind.LAUNCH_FAILURE,
    ErrorKind.SESSION_UNAVAILABLE,
    ErrorKind.NAVIGATION_TIMEOUT,
    ErrorKind.CAPACITY_EXCEEDED,
})


class CaptureRequest(BaseModel):
    """A single request to render a URL as a full-page image."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    url: str = Field(description="Absolute, scheme-qualified URL to capture")
    device_profile: DeviceProfile = Field(
        default=DeviceProfile.DESKTOP,
        description="Device class to emulate"
    )
    width: Optional[int] = Field(
        default=None,
        description="Viewport width (custom profile only)"
    )
    height: Optional[int] = Field(
        default=None,
        description="Viewport height (custom profile only)"
    )
    follow_redirects: bool = Field(
        default=True,
        description="Follow server and client redirects during navigation"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Require a non-empty http(s) URL with a host."""
        if not v or not v.strip():
            raise ValueError("URL must not be empty")
        result = urlparse(v.strip())
        if result.scheme not in ('http', 'https'):
            raise ValueError(f"URL must use http or https scheme: {v}")
        if not result.netloc:
            raise ValueError(f"URL has no host: {v}")
        return v.strip()

    @field_validator('device_profile', mode='before')
    @classmethod
    def default_device_profile(cls, v):
        """Treat a missing profile as desktop."""
        if v is None or v == "":
            return DeviceProfile.DESKTOP
        return v


class Viewport(BaseModel):
    """Resolved rendering dimensions, immutable once produced."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0, description="Viewport width in CSS pixels")
    height: int = Field(gt=0, description="Viewport height in CSS pixels")

    def to_playwright(self) -> dict:
        return {'width': self.width, 'height': self.height}


class CapturedImage(BaseModel):
    """Raster output of a successful capture."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(description="Encoded image bytes")
    mime_type: str = Field(default=PNG_MIME_TYPE, description="Image content type")

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def is_png(self) -> bool:
        return self.data.startswith(PNG_SIGNATURE)


class CaptureFailure(BaseModel):
    """Classified failure returned instead of an image."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind = Field(description="Failure classification")
    message: str = Field(description="Human readable failure description")

    @property
    def retryable(self) -> bool:
        """Whether a caller-level retry with a fresh session may succeed."""
        return self.kind in RETRYABLE_KINDS


class CaptureResult(BaseModel):
    """Terminal outcome of one capture: an image or a failure, never both."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="URL that was requested")
    image: Optional[CapturedImage] = Field(
        default=None,
        description="Captured image on success"
    )
    error: Optional[CaptureFailure] = Field(
        default=None,
        description="Failure on error"
    )
    final_url: Optional[str] = Field(
        default=None,
        description="URL of the page that was rendered"
    )
    viewport: Optional[Viewport] = Field(
        default=None,
        description="Viewport the page was rendered at"
    )
    redirect_blocked: bool = Field(
        default=False,
        description="Whether a redirect navigation was aborted"
    )
    capture_time: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the capture started"
    )
    duration_ms: Optional[float] = Field(
        default=None,
        description="Total capture time in milliseconds"
    )

    @model_validator(mode='after')
    def check_exactly_one_outcome(self):
        if (self.image is None) == (self.error is None):
            raise ValueError("CaptureResult requires exactly one of image or error")
        return self

    @classmethod
    def success(cls, url: str, data: bytes, **metadata) -> "CaptureResult":
        return cls(url=url, image=CapturedImage(data=data), **metadata)

    @classmethod
    def failure(cls, url: str, kind: ErrorKind, message: str, **metadata) -> "CaptureResult":
        return cls(url=url, error=CaptureFailure(kind=kind, message=message), **metadata)

    @property
    def is_successful(self) -> bool:
        return self.image is not None

    @property
    def mime_type(self) -> Optional[str]:
        return self.image.mime_type if self.image else None
