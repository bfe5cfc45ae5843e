"""Shared test fixtures and configuration for page capture tests."""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, patch
import sys

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pagecapture.models.capture import CaptureRequest, DeviceProfile
from pagecapture.capture.session_manager import Session

from tests.helpers import make_mock_browser, make_mock_page


@pytest.fixture
def mock_page():
    """Mock Playwright page."""
    return make_mock_page()


@pytest.fixture
def mock_session():
    """Session wrapping mocked Playwright objects."""
    browser, context, page = make_mock_browser()
    return Session(browser=browser, context=context, page=page)


@pytest.fixture
def mock_playwright():
    """Patch async_playwright so launches return fresh mocked browsers."""
    with patch('pagecapture.capture.session_manager.async_playwright') as mock_pw:
        playwright_mock = AsyncMock()
        async_pw_instance = AsyncMock()
        async_pw_instance.start = AsyncMock(return_value=playwright_mock)
        mock_pw.return_value = async_pw_instance

        launched = []

        async def launch(**kwargs):
            browser, _, _ = make_mock_browser()
            launched.append(browser)
            return browser

        playwright_mock.chromium.launch = AsyncMock(side_effect=launch)

        yield {
            'playwright': playwright_mock,
            'launched': launched,
        }


@pytest.fixture
def sample_request():
    """Desktop capture request that follows redirects."""
    return CaptureRequest(url="https://example.com", device_profile=DeviceProfile.DESKTOP)


@pytest.fixture
def temp_config_file(tmp_path):
    """Write a capture YAML config and return its path."""
    def _write(content: str) -> Path:
        path = tmp_path / "capture.yaml"
        path.write_text(content)
        return path
    return _write


@pytest.fixture
def mock_stealth():
    """Patch the stealth bundle so no real init scripts are generated."""
    with patch('pagecapture.capture.evasion.Stealth') as stealth_cls:
        stealth = stealth_cls.return_value
        stealth.apply_stealth_async = AsyncMock()
        yield stealth
