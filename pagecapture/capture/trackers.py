"""Tracker and ad request blocking for capture pages.

Blocks sub-resource requests to well-known tracking and advertising hosts so
they neither delay network idle nor paint banners into the capture. Document
requests are never blocked.
"""

import logging
from typing import Iterable, Optional
from urllib.parse import urlparse

from playwright.async_api import Page, Route

logger = logging.getLogger(__name__)


DEFAULT_TRACKER_HOSTS = (
    "google-analytics.com",
    "googletagmanager.com",
    "googleadservices.com",
    "googlesyndication.com",
    "doubleclick.net",
    "adservice.google.com",
    "connect.facebook.net",
    "facebook.com/tr",
    "analytics.twitter.com",
    "ads-twitter.com",
    "bat.bing.com",
    "clarity.ms",
    "hotjar.com",
    "segment.io",
    "cdn.segment.com",
    "mixpanel.com",
    "amplitude.com",
    "fullstory.com",
    "scorecardresearch.com",
    "quantserve.com",
    "taboola.com",
    "outbrain.com",
    "criteo.com",
    "adnxs.com",
    "amazon-adsystem.com",
)

_NEVER_BLOCKED_TYPES = {"document"}


class TrackerBlocker:
    """Aborts requests to tracker hosts and falls through for everything else."""

    def __init__(self, hosts: Optional[Iterable[str]] = None):
        self.hosts = tuple(h.lower() for h in (hosts or DEFAULT_TRACKER_HOSTS))
        self.blocked_count = 0

    def is_tracker(self, url: str) -> bool:
        """Check whether a URL points at a tracker host.

        Entries containing a path (``facebook.com/tr``) match on host + path
        prefix; plain entries match the host or any of its subdomains.
        """
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if not host:
            return False

        for entry in self.hosts:
            entry_host, _, entry_path = entry.partition("/")
            if host != entry_host and not host.endswith("." + entry_host):
                continue
            if not entry_path or parsed.path.lstrip("/").startswith(entry_path):
                return True
        return False

    async def install(self, page: Page) -> None:
        """Register the blocking route on a page."""
        await page.route("**/*", self._handle_route)
        logger.debug(f"Tracker blocker installed ({len(self.hosts)} hosts)")

    async def _handle_route(self, route: Route) -> None:
        request = route.request
        if request.resource_type not in _NEVER_BLOCKED_TYPES and self.is_tracker(request.url):
            self.blocked_count += 1
            logger.debug(f"Blocked tracker request: {request.url}")
            await route.abort("blockedbyclient")
            return
        await route.fallback()
