"""Exception hierarchy for the Capture Engine.

Each exception carries the ErrorKind it maps to at the public boundary, so the
engine can classify any failure without inspecting message text.
"""

from typing import Optional

from ..models.capture import ErrorKind


class CaptureEngineError(Exception):
    """Base error for all capture engine failures."""

    kind: ErrorKind = ErrorKind.INTERNAL_FAULT

    def __init__(
        self,
        message: str = "Capture failed",
        details: Optional[dict] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidRequestError(CaptureEngineError):
    """Raised when a capture request is malformed."""

    kind = ErrorKind.INVALID_REQUEST


class InvalidProfileError(InvalidRequestError):
    """Raised when a device profile cannot be resolved to a viewport."""

    def __init__(
        self,
        message: str = "Invalid device profile",
        device_profile: Optional[str] = None
    ):
        super().__init__(
            message=message,
            details={"device_profile": device_profile} if device_profile else {}
        )


class LaunchError(CaptureEngineError):
    """Raised when a browser process could not be started."""

    kind = ErrorKind.LAUNCH_FAILURE


class SessionUnavailableError(CaptureEngineError):
    """Raised when a session is closed or crashed while being configured."""

    kind = ErrorKind.SESSION_UNAVAILABLE

    def __init__(
        self,
        message: str = "Browser session is not available",
        session_id: Optional[str] = None
    ):
        super().__init__(
            message=message,
            details={"session_id": session_id} if session_id else {}
        )


class NavigationTimeoutError(CaptureEngineError):
    """Raised when the page did not settle before the navigation deadline."""

    kind = ErrorKind.NAVIGATION_TIMEOUT


class CaptureDeadlineError(NavigationTimeoutError):
    """Raised when the overall capture deadline expires."""

    def __init__(self, phase: str, deadline_ms: int):
        super().__init__(
            message=f"Capture deadline of {deadline_ms}ms exceeded during {phase}",
            details={"phase": phase, "deadline_ms": deadline_ms}
        )
        self.phase = phase


class NavigationAbortedError(CaptureEngineError):
    """Raised when the target page itself failed to load."""

    kind = ErrorKind.NAVIGATION_FAILURE


class ContentNotReadyError(CaptureEngineError):
    """Raised when the document body never appeared."""

    kind = ErrorKind.CONTENT_NOT_READY


class ScreenshotError(CaptureEngineError):
    """Raised when the raster export failed after navigation."""

    kind = ErrorKind.CAPTURE_FAILURE


class CapacityExceededError(CaptureEngineError):
    """Raised when no session slot became free within the bounded wait."""

    kind = ErrorKind.CAPACITY_EXCEEDED

    def __init__(self, max_sessions: int, waited_ms: int):
        super().__init__(
            message=(
                f"No browser session slot available within {waited_ms}ms "
                f"({max_sessions} sessions in use)"
            ),
            details={"max_sessions": max_sessions, "waited_ms": waited_ms}
        )
