"""Browser session lifecycle management for page captures.

This module provides the SessionManager class that owns one isolated Chromium
process and one page per capture: acquire, configure, capture, release. The
number of live sessions is bounded by a semaphore, and an optional warm pool
keeps pre-launched browser processes ready to hand out.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List, Optional, Set, Union

from playwright.async_api import (
    Browser,
    BrowserContext,
    CDPSession,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
)

from ..models.capture import PNG_SIGNATURE, Viewport
from .errors import (
    CapacityExceededError,
    LaunchError,
    ScreenshotError,
    SessionUnavailableError,
)
from .trackers import TrackerBlocker

logger = logging.getLogger(__name__)


# Chromium exposes navigator.webdriver and the "controlled by automated
# software" state through these; both must be off at process level.
AUTOMATION_SUPPRESSION_ARGS = ["--disable-blink-features=AutomationControlled"]
AUTOMATION_DEFAULT_ARGS = ["--enable-automation"]
SANDBOX_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


class BrowserConfig:
    """Configuration for browser process launch and context setup."""

    def __init__(
        self,
        headless: bool = True,
        executable_path: Optional[Union[str, Path]] = None,
        disable_sandbox: bool = True,
        launch_timeout_ms: int = 30000,
        extra_args: Optional[List[str]] = None,
        locale: Optional[str] = "en-US",
        timezone: Optional[str] = None,
        ignore_https_errors: bool = False,
        **kwargs
    ):
        """Initialize browser configuration.

        Args:
            headless: Run browser in headless mode
            executable_path: Chromium binary to launch (bundled browser if None)
            disable_sandbox: Pass the no-sandbox flags required by containers
            launch_timeout_ms: Maximum time to wait for the process to start
            extra_args: Additional Chromium command line switches
            locale: Locale for the browser context
            timezone: Timezone ID (e.g., 'America/New_York')
            ignore_https_errors: Ignore SSL/TLS certificate errors
        """
        self.headless = headless
        self.executable_path = Path(executable_path) if executable_path else None
        self.disable_sandbox = disable_sandbox
        self.launch_timeout_ms = launch_timeout_ms
        self.extra_args = extra_args or []
        self.locale = locale
        self.timezone = timezone
        self.ignore_https_errors = ignore_https_errors
        self.extra_options = kwargs

    def to_launch_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        args = list(AUTOMATION_SUPPRESSION_ARGS)
        if self.disable_sandbox:
            args.extend(SANDBOX_ARGS)
        args.extend(self.extra_args)

        options = {
            'headless': self.headless,
            'args': args,
            'ignore_default_args': list(AUTOMATION_DEFAULT_ARGS),
            'timeout': self.launch_timeout_ms,
        }

        if self.executable_path:
            options['executable_path'] = str(self.executable_path)

        options.update(self.extra_options)

        return options

    def to_context_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser context options."""
        options = {}

        if self.locale:
            options['locale'] = self.locale

        if self.timezone:
            options['timezone_id'] = self.timezone

        if self.ignore_https_errors:
            options['ignore_https_errors'] = True

        return options


@dataclass
class Session:
    """One browser process and one page, exclusively owned by one capture."""

    browser: Browser
    context: BrowserContext
    page: Page
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: datetime = field(default_factory=datetime.utcnow)
    from_warm_pool: bool = False
    evasion_applied: bool = False
    released: bool = False
    cdp: Optional[CDPSession] = None

    @property
    def is_alive(self) -> bool:
        """Check if the process is connected and the page is open."""
        if self.released:
            return False
        try:
            return self.browser.is_connected() and not self.page.is_closed()
        except PlaywrightError:
            return False


class SessionManager:
    """Owns the lifecycle of browser sessions, one per capture."""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        max_sessions: int = 4,
        acquire_timeout_ms: int = 10000,
        release_timeout_ms: int = 10000,
        screenshot_timeout_ms: int = 30000,
        warm_pool_size: int = 0,
        tracker_blocker: Optional[TrackerBlocker] = None,
    ):
        """Initialize session manager.

        Args:
            config: Browser configuration object
            max_sessions: Maximum number of concurrently live sessions
            acquire_timeout_ms: Bounded wait for a free session slot
            release_timeout_ms: Bounded wait for a browser process to close
            screenshot_timeout_ms: Timeout for the raster export
            warm_pool_size: Number of pre-launched browsers to keep ready
            tracker_blocker: Blocker installed on every configured page
        """
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")

        self.config = config or BrowserConfig()
        self.max_sessions = max_sessions
        self.acquire_timeout_ms = acquire_timeout_ms
        self.release_timeout_ms = release_timeout_ms
        self.screenshot_timeout_ms = screenshot_timeout_ms
        self.warm_pool_size = max(0, warm_pool_size)
        self.tracker_blocker = tracker_blocker

        self.playwright: Optional[Playwright] = None
        self._slots: Optional[asyncio.Semaphore] = None
        self._warm_pool: List[Browser] = []
        self._refill_tasks: Set[asyncio.Task] = set()
        self._live_sessions: Dict[str, Session] = {}

        self.acquired_count = 0
        self.released_count = 0

    async def start(self) -> None:
        """Start Playwright and pre-launch the warm pool."""
        if self.playwright is not None:
            logger.warning("Session manager already started")
            return

        logger.info(f"Starting session manager (max_sessions={self.max_sessions}, warm_pool={self.warm_pool_size})")

        try:
            self.playwright = await async_playwright().start()
            self._slots = asyncio.Semaphore(self.max_sessions)

            for _ in range(self.warm_pool_size):
                self._warm_pool.append(await self._launch_browser())

            logger.info("Session manager started successfully")

        except Exception as e:
            logger.error(f"Failed to start session manager: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Release live sessions, close warm browsers and stop Playwright."""
        logger.info("Stopping session manager")

        for task in list(self._refill_tasks):
            task.cancel()
        if self._refill_tasks:
            await asyncio.gather(*self._refill_tasks, return_exceptions=True)
        self._refill_tasks.clear()

        for session in list(self._live_sessions.values()):
            logger.warning(f"Releasing session {session.session_id} still live at shutdown")
            await self.release(session)

        while self._warm_pool:
            browser = self._warm_pool.pop()
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"Error closing warm browser: {e}")

        if self.playwright:
            try:
                await self.playwright.stop()
            except Exception as e:
                logger.error(f"Error stopping Playwright: {e}")
            self.playwright = None

        self._slots = None
        logger.info("Session manager stopped")

    async def acquire(self) -> Session:
        """Acquire an isolated browser session.

        Returns:
            New session with one browser process, context and page

        Raises:
            RuntimeError: If the session manager is not started
            CapacityExceededError: If no slot frees up within the bounded wait
            LaunchError: If the browser process or page could not be created
        """
        if self.playwright is None or self._slots is None:
            raise RuntimeError("Session manager not started. Call start() first.")

        try:
            await asyncio.wait_for(
                self._slots.acquire(),
                timeout=self.acquire_timeout_ms / 1000.0
            )
        except asyncio.TimeoutError:
            logger.warning(f"Session slot wait exceeded {self.acquire_timeout_ms}ms")
            raise CapacityExceededError(self.max_sessions, self.acquire_timeout_ms) from None

        try:
            session = await self._open_session()
        except BaseException:
            self._slots.release()
            raise

        self._live_sessions[session.session_id] = session
        self.acquired_count += 1
        logger.debug(f"Acquired session {session.session_id} (live={len(self._live_sessions)})")
        return session

    async def configure(self, session: Session, viewport: Viewport) -> None:
        """Apply the resolved viewport to the session's page.

        Raises:
            SessionUnavailableError: If the session is closed or crashed
        """
        self._require_alive(session)

        try:
            await session.page.set_viewport_size(viewport.to_playwright())
            if self.tracker_blocker:
                await self.tracker_blocker.install(session.page)
        except PlaywrightError as e:
            raise SessionUnavailableError(
                f"Failed to configure session: {e}",
                session_id=session.session_id
            ) from e

        logger.debug(f"Configured session {session.session_id} viewport {viewport.width}x{viewport.height}")

    async def capture(self, session: Session) -> bytes:
        """Export the full page as PNG.

        Raises:
            ScreenshotError: If the export failed or produced no PNG data
        """
        if not session.is_alive:
            raise ScreenshotError(
                "Page closed before capture",
                details={"session_id": session.session_id}
            )

        try:
            data = await session.page.screenshot(
                type="png",
                full_page=True,
                timeout=self.screenshot_timeout_ms
            )
        except PlaywrightError as e:
            raise ScreenshotError(
                f"Full-page PNG export failed: {e}",
                details={"session_id": session.session_id}
            ) from e

        if not data or not data.startswith(PNG_SIGNATURE):
            raise ScreenshotError(
                "Raster export did not produce PNG data",
                details={"session_id": session.session_id}
            )

        logger.debug(f"Captured {len(data)} bytes from session {session.session_id}")
        return data

    async def release(self, session: Session) -> None:
        """Terminate the session's browser process and free its slot.

        Never raises; a second call for the same session is a no-op.
        """
        if session.released:
            logger.warning(f"Session {session.session_id} already released")
            return
        session.released = True

        try:
            await asyncio.wait_for(
                session.browser.close(),
                timeout=self.release_timeout_ms / 1000.0
            )
        except asyncio.TimeoutError:
            logger.error(f"Browser close timed out for session {session.session_id}")
        except Exception as e:
            logger.warning(f"Error closing browser for session {session.session_id}: {e}")
        finally:
            self._live_sessions.pop(session.session_id, None)
            self.released_count += 1
            if self._slots is not None:
                self._slots.release()

        logger.debug(f"Released session {session.session_id} (live={len(self._live_sessions)})")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[Session, None]:
        """Context manager for one session's lifecycle.

        Yields:
            Acquired session that is released on every exit path
        """
        session = await self.acquire()
        try:
            yield session
        finally:
            # Shielded so a cancelled capture still tears its browser down
            await asyncio.shield(self.release(session))

    async def _open_session(self) -> Session:
        browser, from_pool = await self._take_browser()

        try:
            context = await browser.new_context(**self.config.to_context_options())
            page = await context.new_page()
        except BaseException as e:
            try:
                await browser.close()
            except Exception as close_error:
                logger.warning(f"Error closing browser after failed page setup: {close_error}")
            if isinstance(e, PlaywrightError):
                raise LaunchError(f"Failed to open browser page: {e}") from e
            raise

        return Session(browser=browser, context=context, page=page, from_warm_pool=from_pool)

    async def _take_browser(self):
        while self._warm_pool:
            browser = self._warm_pool.pop()
            self._schedule_refill()
            if browser.is_connected():
                return browser, True
            logger.warning("Discarding disconnected warm browser")

        return await self._launch_browser(), False

    async def _launch_browser(self) -> Browser:
        try:
            browser = await self.playwright.chromium.launch(**self.config.to_launch_options())
        except PlaywrightError as e:
            logger.error(f"Failed to launch browser: {e}")
            raise LaunchError(f"Failed to launch browser: {e}") from e

        logger.debug(f"Browser launched (version={browser.version})")
        return browser

    def _schedule_refill(self) -> None:
        if len(self._warm_pool) + len(self._refill_tasks) >= self.warm_pool_size:
            return
        task = asyncio.create_task(self._refill_one())
        self._refill_tasks.add(task)
        task.add_done_callback(self._refill_tasks.discard)

    async def _refill_one(self) -> None:
        try:
            browser = await self._launch_browser()
        except LaunchError as e:
            logger.warning(f"Warm pool refill failed: {e}")
            return

        if self.playwright is None:
            await browser.close()
            return
        self._warm_pool.append(browser)

    def _require_alive(self, session: Session) -> None:
        if not session.is_alive:
            raise SessionUnavailableError(
                "Session is closed or crashed",
                session_id=session.session_id
            )

    @property
    def is_running(self) -> bool:
        return self.playwright is not None

    @property
    def live_session_count(self) -> int:
        return len(self._live_sessions)

    @property
    def warm_pool_count(self) -> int:
        return len(self._warm_pool)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'running': self.is_running,
            'max_sessions': self.max_sessions,
            'live_sessions': self.live_session_count,
            'warm_pool': self.warm_pool_count,
            'sessions_acquired': self.acquired_count,
            'sessions_released': self.released_count,
        }

    def __repr__(self) -> str:
        return (
            f"SessionManager(running={self.is_running}, "
            f"live={self.live_session_count}/{self.max_sessions}, "
            f"warm={self.warm_pool_count})"
        )
