"""Shared fixtures for browser-backed capture tests."""

import pytest
import pytest_asyncio
from pathlib import Path
import sys

from aiohttp import web

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from pagecapture.capture.engine import CaptureEngine, CaptureEngineConfig
from pagecapture.capture.errors import LaunchError


TALL_PAGE = """<!DOCTYPE html>
<html>
<head><title>Tall page</title></head>
<body style="margin:0">
  <div style="height:2400px;background:linear-gradient(#fff,#336)">Top</div>
  <p>Bottom</p>
</body>
</html>
"""

TARGET_PAGE = """<!DOCTYPE html>
<html><head><title>Target</title></head><body><h1>Redirect target</h1></body></html>
"""

SCRIPT_REDIRECT_PAGE = """<!DOCTYPE html>
<html><head><title>Script redirect</title></head>
<body><p>Leaving</p><script>window.location.href = '/target';</script></body>
</html>
"""


def build_test_app() -> web.Application:
    """Small site with plain pages and redirects."""
    app = web.Application()
    app['seen_user_agents'] = []

    async def tall(request):
        app['seen_user_agents'].append(request.headers.get('User-Agent', ''))
        return web.Response(text=TALL_PAGE, content_type='text/html')

    async def target(request):
        return web.Response(text=TARGET_PAGE, content_type='text/html')

    async def redirect(request):
        raise web.HTTPFound('/target')

    async def script_redirect(request):
        return web.Response(text=SCRIPT_REDIRECT_PAGE, content_type='text/html')

    app.router.add_get('/', tall)
    app.router.add_get('/target', target)
    app.router.add_get('/redirect', redirect)
    app.router.add_get('/script-redirect', script_redirect)
    return app


@pytest_asyncio.fixture
async def site():
    """Serve the test site on an ephemeral loopback port."""
    app = build_test_app()
    runner = web.AppRunner(app)
    await runner.setup()
    tcp_site = web.TCPSite(runner, '127.0.0.1', 0)
    await tcp_site.start()

    host, port = runner.addresses[0][:2]
    yield {'base_url': f"http://{host}:{port}", 'app': app}

    await runner.cleanup()


@pytest_asyncio.fixture
async def engine():
    """Started engine backed by a real Chromium; skips when none is installed."""
    config = CaptureEngineConfig(
        max_concurrent_sessions=2,
        navigation_timeout_ms=15000,
        content_timeout_ms=5000,
        capture_deadline_ms=25000,
    )
    engine = CaptureEngine(config)
    await engine.start()

    try:
        probe = await engine.session_manager.acquire()
    except LaunchError as e:
        await engine.stop()
        pytest.skip(f"Chromium not available: {e}")
    await engine.session_manager.release(probe)

    yield engine

    await engine.stop()
