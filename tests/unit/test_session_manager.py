"""Unit tests for session manager."""

import pytest
import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

from playwright.async_api import Error as PlaywrightError

from pagecapture.models.capture import Viewport
from pagecapture.capture.errors import (
    CapacityExceededError,
    LaunchError,
    ScreenshotError,
    SessionUnavailableError,
)
from pagecapture.capture.session_manager import BrowserConfig, SessionManager
from pagecapture.capture.trackers import TrackerBlocker

from tests.helpers import FAKE_PNG


class TestBrowserConfig:
    """Tests for BrowserConfig class."""

    def test_default_config(self):
        """Test default configuration values."""
        config = BrowserConfig()

        assert config.headless is True
        assert config.executable_path is None
        assert config.disable_sandbox is True
        assert config.locale == "en-US"

    def test_launch_options(self):
        """Test automation flags and sandbox switches in launch options."""
        options = BrowserConfig().to_launch_options()

        assert options['headless'] is True
        assert options['args'] == [
            "--disable-blink-features=AutomationControlled",
            "--no-sandbox",
            "--disable-setuid-sandbox",
        ]
        assert options['ignore_default_args'] == ["--enable-automation"]
        assert options['timeout'] == 30000
        assert 'executable_path' not in options

    def test_launch_options_custom(self):
        """Test custom executable, extra args and pass-through options."""
        config = BrowserConfig(
            headless=False,
            executable_path="/opt/chromium/chrome",
            disable_sandbox=False,
            extra_args=["--disable-gpu"],
            slow_mo=100
        )

        options = config.to_launch_options()

        assert options['headless'] is False
        assert options['executable_path'] == str(Path("/opt/chromium/chrome"))
        assert "--no-sandbox" not in options['args']
        assert options['args'][-1] == "--disable-gpu"
        assert options['slow_mo'] == 100

    def test_context_options(self):
        config = BrowserConfig(timezone="Europe/Berlin", ignore_https_errors=True)

        assert config.to_context_options() == {
            'locale': "en-US",
            'timezone_id': "Europe/Berlin",
            'ignore_https_errors': True,
        }

    def test_context_options_minimal(self):
        assert BrowserConfig(locale=None).to_context_options() == {}


class TestSession:
    """Tests for Session liveness."""

    def test_alive(self, mock_session):
        assert mock_session.is_alive is True
        assert len(mock_session.session_id) == 12

    def test_disconnected_browser(self, mock_session):
        mock_session.browser.is_connected.return_value = False
        assert mock_session.is_alive is False

    def test_closed_page(self, mock_session):
        mock_session.page.is_closed.return_value = True
        assert mock_session.is_alive is False

    def test_released(self, mock_session):
        mock_session.released = True
        assert mock_session.is_alive is False


class TestSessionManager:
    """Tests for SessionManager class."""

    @pytest.fixture
    def manager(self):
        return SessionManager(max_sessions=2, acquire_timeout_ms=50)

    def test_invalid_max_sessions(self):
        with pytest.raises(ValueError):
            SessionManager(max_sessions=0)

    @pytest.mark.asyncio
    async def test_start_stop(self, manager, mock_playwright):
        """Test manager lifecycle."""
        await manager.start()

        assert manager.is_running is True
        assert mock_playwright['launched'] == []

        await manager.stop()

        assert manager.is_running is False
        mock_playwright['playwright'].stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_acquire_not_started(self, manager):
        with pytest.raises(RuntimeError, match="not started"):
            await manager.acquire()

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, manager, mock_playwright):
        """Test a session owns one fresh browser and is torn down on release."""
        await manager.start()

        session = await manager.acquire()

        assert len(mock_playwright['launched']) == 1
        assert session.browser is mock_playwright['launched'][0]
        assert session.from_warm_pool is False
        assert manager.live_session_count == 1
        session.browser.new_context.assert_awaited_once_with(locale="en-US")

        await manager.release(session)

        session.browser.close.assert_awaited_once()
        assert session.released is True
        assert manager.live_session_count == 0
        assert manager.acquired_count == manager.released_count == 1

        await manager.stop()

    @pytest.mark.asyncio
    async def test_launch_options_passed(self, mock_playwright):
        manager = SessionManager(config=BrowserConfig(executable_path="/usr/bin/chromium"))
        await manager.start()

        await manager.acquire()

        kwargs = mock_playwright['playwright'].chromium.launch.await_args.kwargs
        assert kwargs['executable_path'] == str(Path("/usr/bin/chromium"))
        assert "--disable-blink-features=AutomationControlled" in kwargs['args']

        await manager.stop()

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, manager, mock_playwright):
        await manager.start()
        session = await manager.acquire()

        await manager.release(session)
        await manager.release(session)

        session.browser.close.assert_awaited_once()
        assert manager.released_count == 1

        # Both slots are free again, not three
        first = await manager.acquire()
        second = await manager.acquire()
        with pytest.raises(CapacityExceededError):
            await manager.acquire()

        await manager.release(first)
        await manager.release(second)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_release_tolerates_close_failure(self, manager, mock_playwright):
        """Test a crashed process still frees its slot."""
        await manager.start()
        session = await manager.acquire()
        session.browser.close.side_effect = PlaywrightError("Browser has been closed")

        await manager.release(session)

        assert manager.live_session_count == 0
        assert manager.released_count == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_release_close_timeout(self, mock_playwright):
        manager = SessionManager(release_timeout_ms=20)
        await manager.start()
        session = await manager.acquire()

        async def hang():
            await asyncio.sleep(10)

        session.browser.close.side_effect = hang

        await manager.release(session)

        assert manager.released_count == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_capacity_exceeded(self, mock_playwright):
        manager = SessionManager(max_sessions=1, acquire_timeout_ms=30)
        await manager.start()
        session = await manager.acquire()

        with pytest.raises(CapacityExceededError) as exc_info:
            await manager.acquire()

        assert exc_info.value.details == {"max_sessions": 1, "waited_ms": 30}
        assert len(mock_playwright['launched']) == 1

        await manager.release(session)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_waiter_gets_freed_slot(self, mock_playwright):
        manager = SessionManager(max_sessions=1, acquire_timeout_ms=1000)
        await manager.start()
        session = await manager.acquire()

        waiter = asyncio.create_task(manager.acquire())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await manager.release(session)
        second = await waiter

        assert second.session_id != session.session_id
        await manager.release(second)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_launch_failure_frees_slot(self, mock_playwright):
        manager = SessionManager(max_sessions=1, acquire_timeout_ms=30)
        await manager.start()
        launch = mock_playwright['playwright'].chromium.launch
        original = launch.side_effect
        launch.side_effect = PlaywrightError("Executable doesn't exist")

        with pytest.raises(LaunchError):
            await manager.acquire()

        launch.side_effect = original
        session = await manager.acquire()
        assert session.is_alive is True

        await manager.release(session)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_page_setup_failure_closes_browser(self, manager, mock_playwright):
        await manager.start()
        browser = AsyncMock()
        browser.new_context.side_effect = PlaywrightError("Target closed")
        mock_playwright['playwright'].chromium.launch.side_effect = None
        mock_playwright['playwright'].chromium.launch.return_value = browser

        with pytest.raises(LaunchError):
            await manager.acquire()

        browser.close.assert_awaited_once()
        assert manager.live_session_count == 0
        await manager.stop()

    @pytest.mark.asyncio
    async def test_session_context_releases_on_error(self, manager, mock_playwright):
        await manager.start()

        with pytest.raises(ValueError):
            async with manager.session() as session:
                raise ValueError("capture blew up")

        assert session.released is True
        session.browser.close.assert_awaited_once()
        assert manager.released_count == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_releases_live_sessions(self, manager, mock_playwright):
        await manager.start()
        session = await manager.acquire()

        await manager.stop()

        assert session.released is True
        session.browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_configure(self, mock_session):
        blocker = TrackerBlocker()
        manager = SessionManager(tracker_blocker=blocker)

        await manager.configure(mock_session, Viewport(width=375, height=667))

        mock_session.page.set_viewport_size.assert_awaited_once_with({'width': 375, 'height': 667})
        mock_session.page.route.assert_awaited_once_with("**/*", blocker._handle_route)

    @pytest.mark.asyncio
    async def test_configure_without_blocker(self, mock_session):
        await SessionManager().configure(mock_session, Viewport(width=10, height=10))
        mock_session.page.route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_configure_closed_session(self, mock_session):
        mock_session.browser.is_connected.return_value = False

        with pytest.raises(SessionUnavailableError):
            await SessionManager().configure(mock_session, Viewport(width=10, height=10))

        mock_session.page.set_viewport_size.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_configure_playwright_error(self, mock_session):
        mock_session.page.set_viewport_size.side_effect = PlaywrightError("Target crashed")

        with pytest.raises(SessionUnavailableError):
            await SessionManager().configure(mock_session, Viewport(width=10, height=10))

    @pytest.mark.asyncio
    async def test_capture(self, mock_session):
        data = await SessionManager(screenshot_timeout_ms=5000).capture(mock_session)

        assert data == FAKE_PNG
        mock_session.page.screenshot.assert_awaited_once_with(type="png", full_page=True, timeout=5000)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [b"", b"\xff\xd8\xff\xe0JFIF"])
    async def test_capture_rejects_non_png(self, mock_session, payload):
        mock_session.page.screenshot.return_value = payload

        with pytest.raises(ScreenshotError):
            await SessionManager().capture(mock_session)

    @pytest.mark.asyncio
    async def test_capture_export_error(self, mock_session):
        mock_session.page.screenshot.side_effect = PlaywrightError("Page crashed")

        with pytest.raises(ScreenshotError):
            await SessionManager().capture(mock_session)

    @pytest.mark.asyncio
    async def test_capture_closed_page(self, mock_session):
        mock_session.page.is_closed.return_value = True

        with pytest.raises(ScreenshotError):
            await SessionManager().capture(mock_session)

        mock_session.page.screenshot.assert_not_awaited()


class TestWarmPool:
    """Tests for pre-launched browser pool."""

    @pytest.mark.asyncio
    async def test_prelaunch_on_start(self, mock_playwright):
        manager = SessionManager(warm_pool_size=2)

        await manager.start()

        assert manager.warm_pool_count == 2
        assert len(mock_playwright['launched']) == 2
        await manager.stop()

    @pytest.mark.asyncio
    async def test_acquire_from_pool_and_refill(self, mock_playwright):
        manager = SessionManager(warm_pool_size=1)
        await manager.start()
        warm = mock_playwright['launched'][0]

        session = await manager.acquire()

        assert session.from_warm_pool is True
        assert session.browser is warm

        await asyncio.sleep(0.01)
        assert manager.warm_pool_count == 1
        assert len(mock_playwright['launched']) == 2

        # Released browsers are closed, never returned to the pool
        await manager.release(session)
        warm.close.assert_awaited_once()
        assert warm not in manager._warm_pool

        await manager.stop()

    @pytest.mark.asyncio
    async def test_disconnected_warm_browser_discarded(self, mock_playwright):
        manager = SessionManager(warm_pool_size=1)
        await manager.start()
        mock_playwright['launched'][0].is_connected.return_value = False

        session = await manager.acquire()

        assert session.from_warm_pool is False
        await manager.release(session)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_closes_pool(self, mock_playwright):
        manager = SessionManager(warm_pool_size=1)
        await manager.start()

        await manager.stop()

        mock_playwright['launched'][0].close.assert_awaited_once()
        assert manager.warm_pool_count == 0

    @pytest.mark.asyncio
    async def test_start_failure_cleans_up(self, mock_playwright):
        mock_playwright['playwright'].chromium.launch.side_effect = PlaywrightError("no chromium")
        manager = SessionManager(warm_pool_size=1)

        with pytest.raises(LaunchError):
            await manager.start()

        assert manager.is_running is False
        mock_playwright['playwright'].stop.assert_awaited_once()


def test_stats_and_repr():
    manager = SessionManager(max_sessions=3)

    stats = manager.get_stats()

    assert stats['running'] is False
    assert stats['max_sessions'] == 3
    assert "live=0/3" in repr(manager)
