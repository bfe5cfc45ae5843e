"""Page Capture Engine.

This module renders an arbitrary URL in an isolated headless Chromium and
returns a full-page PNG, with device-profile emulation, a redirect-following
policy and bot-detection evasion, all under a hard deadline.

Main Components:
- Core Data Models: Pydantic models for requests and results (models/capture.py)
- Profile Resolver: Device profile to viewport mapping
- Session Manager: Bounded, guaranteed-release browser sessions
- Evasion Layer: Fixed fingerprint countermeasure bundle
- Navigation Controller: Redirect policy, network idle and content readiness
- Capture Engine: Orchestration, deadline and error classification

Usage:
    from pagecapture.capture import CaptureEngine, CaptureRequest

    async with CaptureEngine() as engine:
        result = await engine.capture(CaptureRequest(url="https://example.com"))
"""

__version__ = "1.0.0"

# Main exports
__all__ = [
    # Data models
    "CaptureRequest",
    "CaptureResult",
    "CapturedImage",
    "CaptureFailure",
    "Viewport",

    # Enums
    "DeviceProfile",
    "ErrorKind",
    "RedirectState",

    # Main components
    "CaptureEngine",
    "CaptureEngineConfig",
    "SessionManager",
    "Session",
    "BrowserConfig",
    "EvasionLayer",
    "NavigationController",
    "NavigationOutcome",
    "RedirectPolicy",
    "NetworkIdleTracker",
    "ProfileResolver",
    "TrackerBlocker",

    # Errors
    "CaptureEngineError",
    "InvalidRequestError",
    "InvalidProfileError",
    "LaunchError",
    "SessionUnavailableError",
    "NavigationTimeoutError",
    "CaptureDeadlineError",
    "NavigationAbortedError",
    "ContentNotReadyError",
    "ScreenshotError",
    "CapacityExceededError",

    # Convenience functions
    "create_capture_engine",
    "create_engine_from_config",
    "resolve_viewport",
]

# Import data models
from ..models.capture import (
    CaptureRequest,
    CaptureResult,
    CapturedImage,
    CaptureFailure,
    Viewport,
    DeviceProfile,
    ErrorKind,
)

from .errors import (
    CaptureEngineError,
    InvalidRequestError,
    InvalidProfileError,
    LaunchError,
    SessionUnavailableError,
    NavigationTimeoutError,
    CaptureDeadlineError,
    NavigationAbortedError,
    ContentNotReadyError,
    ScreenshotError,
    CapacityExceededError,
)

# Import main components
from .engine import (
    CaptureEngine,
    CaptureEngineConfig,
    create_capture_engine,
)

from .session_manager import (
    SessionManager,
    Session,
    BrowserConfig,
)

from .navigation import (
    NavigationController,
    NavigationOutcome,
    RedirectPolicy,
    RedirectState,
)

from .evasion import EvasionLayer
from .network_idle import NetworkIdleTracker
from .profiles import ProfileResolver, resolve_viewport
from .trackers import TrackerBlocker
from .config import create_engine_from_config
