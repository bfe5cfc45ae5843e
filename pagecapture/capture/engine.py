"""Main capture engine that coordinates all capture components.

This module provides the CaptureEngine class that drives profile resolution,
session management, evasion and navigation in sequence for each capture
request, under one overall deadline, and classifies every failure into a
CaptureResult instead of letting it escape.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..models.capture import CaptureRequest, CaptureResult, ErrorKind, Viewport
from .errors import CaptureDeadlineError, CaptureEngineError
from .evasion import DEFAULT_USER_AGENT, EvasionLayer
from .navigation import NavigationController, NavigationOutcome
from .profiles import ProfileResolver
from .session_manager import BrowserConfig, Session, SessionManager
from .trackers import TrackerBlocker

logger = logging.getLogger(__name__)


class CaptureEngineConfig:
    """Configuration for the capture engine."""

    def __init__(
        self,
        # Browser configuration
        browser_config: Optional[BrowserConfig] = None,
        user_agent: str = DEFAULT_USER_AGENT,

        # Resource pool
        max_concurrent_sessions: int = 4,
        acquire_timeout_ms: int = 10000,
        release_timeout_ms: int = 10000,
        warm_pool_size: int = 0,

        # Deadlines
        navigation_timeout_ms: int = 30000,
        content_timeout_ms: int = 10000,
        capture_deadline_ms: int = 45000,
        screenshot_timeout_ms: int = 30000,

        # Load completion
        network_idle_max_inflight: int = 2,
        network_idle_quiet_ms: int = 500,

        # Request filtering
        block_trackers: bool = True,
    ):
        """Initialize capture engine configuration.

        Args:
            browser_config: Browser launch and context configuration
            user_agent: Fixed browser identification string
            max_concurrent_sessions: Maximum concurrently live browser processes
            acquire_timeout_ms: Bounded wait for a free session slot
            release_timeout_ms: Bounded wait for a browser process to close
            warm_pool_size: Pre-launched browser processes kept ready
            navigation_timeout_ms: Deadline for navigation until network idle
            content_timeout_ms: Deadline for the body after navigation
            capture_deadline_ms: Overall deadline for everything after acquire
            screenshot_timeout_ms: Timeout for the raster export
            network_idle_max_inflight: Requests tolerated in flight while idle
            network_idle_quiet_ms: Quiet window that counts as network idle
            block_trackers: Abort requests to known tracker and ad hosts
        """
        self.browser_config = browser_config or BrowserConfig()
        self.user_agent = user_agent

        self.max_concurrent_sessions = max_concurrent_sessions
        self.acquire_timeout_ms = acquire_timeout_ms
        self.release_timeout_ms = release_timeout_ms
        self.warm_pool_size = warm_pool_size

        self.navigation_timeout_ms = navigation_timeout_ms
        self.content_timeout_ms = content_timeout_ms
        self.capture_deadline_ms = capture_deadline_ms
        self.screenshot_timeout_ms = screenshot_timeout_ms

        self.network_idle_max_inflight = network_idle_max_inflight
        self.network_idle_quiet_ms = network_idle_quiet_ms

        self.block_trackers = block_trackers

    def create_session_manager(self) -> SessionManager:
        return SessionManager(
            config=self.browser_config,
            max_sessions=self.max_concurrent_sessions,
            acquire_timeout_ms=self.acquire_timeout_ms,
            release_timeout_ms=self.release_timeout_ms,
            screenshot_timeout_ms=self.screenshot_timeout_ms,
            warm_pool_size=self.warm_pool_size,
            tracker_blocker=TrackerBlocker() if self.block_trackers else None,
        )

    def create_navigation_controller(self) -> NavigationController:
        return NavigationController(
            navigation_timeout_ms=self.navigation_timeout_ms,
            content_timeout_ms=self.content_timeout_ms,
            idle_max_inflight=self.network_idle_max_inflight,
            idle_quiet_ms=self.network_idle_quiet_ms,
        )


class CaptureEngine:
    """Public entry point: turns a CaptureRequest into a CaptureResult."""

    def __init__(
        self,
        config: Optional[CaptureEngineConfig] = None,
        session_manager: Optional[SessionManager] = None,
        profile_resolver: Optional[ProfileResolver] = None,
        evasion_layer: Optional[EvasionLayer] = None,
    ):
        """Initialize capture engine.

        Args:
            config: Engine configuration (uses defaults if None)
            session_manager: Session manager (built from config if None)
            profile_resolver: Viewport resolver (built-in presets if None)
            evasion_layer: Evasion bundle (fixed user agent from config if None)
        """
        self.config = config or CaptureEngineConfig()
        self.session_manager = session_manager or self.config.create_session_manager()
        self.profile_resolver = profile_resolver or ProfileResolver()
        self.evasion_layer = evasion_layer or EvasionLayer(user_agent=self.config.user_agent)

        self.stats = {
            'captures_attempted': 0,
            'captures_successful': 0,
            'captures_failed': 0,
            'failures_by_kind': {},
            'total_duration_ms': 0.0,
            'start_time': None,
        }

    async def start(self) -> None:
        """Start the capture engine and its session manager."""
        if self.session_manager.is_running:
            logger.warning("Capture engine already running")
            return

        logger.info("Starting capture engine")
        await self.session_manager.start()
        self.stats['start_time'] = datetime.utcnow()
        logger.info("Capture engine started successfully")

    async def stop(self) -> None:
        """Stop the capture engine and release all browser processes."""
        logger.info("Stopping capture engine")
        await self.session_manager.stop()
        logger.info("Capture engine stopped successfully")

    async def __aenter__(self) -> "CaptureEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    @asynccontextmanager
    async def running(self) -> AsyncGenerator["CaptureEngine", None]:
        """Context manager for engine lifecycle.

        Yields:
            Started capture engine that will be automatically stopped
        """
        try:
            await self.start()
            yield self
        finally:
            await self.stop()

    async def capture(
        self,
        request: Union[CaptureRequest, Mapping[str, Any]]
    ) -> CaptureResult:
        """Capture a full-page PNG for one request.

        Args:
            request: CaptureRequest, or a mapping with the same fields

        Returns:
            CaptureResult holding either the image or a classified failure

        Raises:
            RuntimeError: If the engine has not been started
        """
        if not self.session_manager.is_running:
            raise RuntimeError("Capture engine not started. Call start() first.")

        loop = asyncio.get_running_loop()
        started = loop.time()
        capture_time = datetime.utcnow()
        url = _request_url(request)
        metadata: Dict[str, Any] = {'capture_time': capture_time}

        try:
            request = self._validate(request)
            url = request.url
            viewport = self.profile_resolver.resolve(
                request.device_profile, request.width, request.height
            )
            metadata['viewport'] = viewport

            async with self.session_manager.session() as session:
                data, outcome = await self._run_with_deadline(session, request, viewport)

            metadata['final_url'] = outcome.final_url
            metadata['redirect_blocked'] = outcome.redirect_blocked
            result = CaptureResult.success(
                url, data,
                duration_ms=(loop.time() - started) * 1000,
                **metadata
            )
            logger.info(f"Captured {url} ({len(data)} bytes, {result.duration_ms:.0f}ms)")

        except CaptureEngineError as e:
            logger.warning(f"Capture of {url} failed [{e.kind.value}]: {e.message}")
            result = CaptureResult.failure(
                url or "", e.kind, e.message,
                duration_ms=(loop.time() - started) * 1000,
                **metadata
            )

        except ValidationError as e:
            message = "; ".join(err['msg'] for err in e.errors())
            logger.warning(f"Rejected capture request for {url}: {message}")
            result = CaptureResult.failure(
                url or "", ErrorKind.INVALID_REQUEST, message,
                duration_ms=(loop.time() - started) * 1000,
                **metadata
            )

        except Exception as e:
            logger.exception(f"Unexpected error capturing {url}")
            result = CaptureResult.failure(
                url or "", ErrorKind.INTERNAL_FAULT, f"{type(e).__name__}: {e}",
                duration_ms=(loop.time() - started) * 1000,
                **metadata
            )

        self._update_stats(result)
        return result

    async def capture_many(
        self,
        requests: Iterable[Union[CaptureRequest, Mapping[str, Any]]]
    ) -> List[CaptureResult]:
        """Capture several independent requests concurrently.

        Results are returned in request order; concurrency is bounded by the
        session manager's slots.
        """
        requests = list(requests)
        logger.info(f"Capturing {len(requests)} pages")
        return list(await asyncio.gather(*(self.capture(r) for r in requests)))

    async def _run_with_deadline(
        self,
        session: Session,
        request: CaptureRequest,
        viewport: Viewport
    ):
        progress = {'phase': 'evasion'}
        try:
            return await asyncio.wait_for(
                self._run_phases(session, request, viewport, progress),
                timeout=self.config.capture_deadline_ms / 1000.0
            )
        except asyncio.TimeoutError:
            raise CaptureDeadlineError(progress['phase'], self.config.capture_deadline_ms) from None

    async def _run_phases(
        self,
        session: Session,
        request: CaptureRequest,
        viewport: Viewport,
        progress: Dict[str, str]
    ):
        navigation = self.config.create_navigation_controller()

        progress['phase'] = 'evasion'
        await self.evasion_layer.apply(session)

        progress['phase'] = 'configure'
        await self.session_manager.configure(session, viewport)

        progress['phase'] = 'redirect_policy'
        await navigation.arm_redirect_policy(session, request.follow_redirects)

        progress['phase'] = 'navigation'
        outcome: NavigationOutcome = await navigation.navigate(session, request.url)

        progress['phase'] = 'capture'
        data = await self.session_manager.capture(session)

        return data, outcome

    @staticmethod
    def _validate(request: Union[CaptureRequest, Mapping[str, Any]]) -> CaptureRequest:
        if isinstance(request, CaptureRequest):
            return request
        return CaptureRequest.model_validate(dict(request))

    def _update_stats(self, result: CaptureResult) -> None:
        self.stats['captures_attempted'] += 1

        if result.is_successful:
            self.stats['captures_successful'] += 1
        else:
            self.stats['captures_failed'] += 1
            kind = result.error.kind.value
            self.stats['failures_by_kind'][kind] = self.stats['failures_by_kind'].get(kind, 0) + 1

        if result.duration_ms:
            self.stats['total_duration_ms'] += result.duration_ms

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics.

        Returns:
            Dictionary with capture and session statistics
        """
        stats = dict(self.stats)
        stats['failures_by_kind'] = dict(self.stats['failures_by_kind'])

        if stats['captures_attempted'] > 0:
            stats['success_rate'] = (stats['captures_successful'] / stats['captures_attempted']) * 100
            stats['average_duration_ms'] = stats['total_duration_ms'] / stats['captures_attempted']
        else:
            stats['success_rate'] = 0
            stats['average_duration_ms'] = 0

        stats['sessions'] = self.session_manager.get_stats()
        stats['is_running'] = self.is_running
        return stats

    @property
    def is_running(self) -> bool:
        return self.session_manager.is_running

    def __repr__(self) -> str:
        return (
            f"CaptureEngine(running={self.is_running}, "
            f"attempted={self.stats['captures_attempted']}, "
            f"failed={self.stats['captures_failed']})"
        )


def _request_url(request: Union[CaptureRequest, Mapping[str, Any]]) -> Optional[str]:
    if isinstance(request, CaptureRequest):
        return request.url
    try:
        value = request.get('url')
    except AttributeError:
        return None
    return value if isinstance(value, str) else None


def create_capture_engine(
    headless: bool = True,
    max_concurrent_sessions: int = 4,
    executable_path: Optional[str] = None,
    **kwargs
) -> CaptureEngine:
    """Create capture engine with common configuration.

    Args:
        headless: Run browser in headless mode
        max_concurrent_sessions: Maximum concurrently live browser processes
        executable_path: Chromium binary to launch
        **kwargs: Additional CaptureEngineConfig options

    Returns:
        Configured CaptureEngine instance
    """
    browser_config = BrowserConfig(headless=headless, executable_path=executable_path)

    engine_config = CaptureEngineConfig(
        browser_config=browser_config,
        max_concurrent_sessions=max_concurrent_sessions,
        **kwargs
    )

    return CaptureEngine(engine_config)
