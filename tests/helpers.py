"""Mock builders shared by the unit tests."""

from unittest.mock import AsyncMock, MagicMock

from pagecapture.models.capture import PNG_SIGNATURE


# Minimal byte string that passes the PNG signature check
FAKE_PNG = PNG_SIGNATURE + b"\x00\x00\x00\rIHDR" + b"\x00" * 32


def make_mock_page(url: str = "https://example.com/") -> AsyncMock:
    """Mock Playwright page with the synchronous members set up as such."""
    page = AsyncMock()
    page.url = url
    page.is_closed = MagicMock(return_value=False)
    page.on = MagicMock()
    page.remove_listener = MagicMock()
    page.main_frame = MagicMock(name="main_frame")
    page.screenshot.return_value = FAKE_PNG
    return page


def make_mock_browser(page=None):
    """Mock Playwright browser -> context -> page chain."""
    page = page or make_mock_page()

    context = AsyncMock()
    context.new_page.return_value = page
    context.new_cdp_session.return_value = AsyncMock()

    browser = AsyncMock()
    browser.version = "124.0.0.0"
    browser.is_connected = MagicMock(return_value=True)
    browser.new_context.return_value = context

    return browser, context, page
