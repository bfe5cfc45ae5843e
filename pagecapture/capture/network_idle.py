"""Network idle detection for page navigation.

This module provides the NetworkIdleTracker class that hooks into Playwright
network events and signals once the page has had no more than a small number
of requests in flight for a continuous quiet window. Long-polling and beacon
traffic keeps strict zero-request idleness from ever happening on many real
pages, so a small tolerance is allowed.
"""

import asyncio
import logging
from typing import Optional, Set

from playwright.async_api import Page, Request

logger = logging.getLogger(__name__)


class NetworkIdleTracker:
    """Tracks in-flight requests and detects a sustained quiet window."""

    def __init__(self, page: Page, max_inflight: int = 2, quiet_ms: int = 500):
        """Initialize tracker for a page.

        Args:
            page: Playwright page to observe
            max_inflight: Requests allowed in flight while still considered idle
            quiet_ms: How long the page must stay at or below max_inflight
        """
        self.page = page
        self.max_inflight = max_inflight
        self.quiet_ms = quiet_ms
        self._inflight: Set[Request] = set()
        self._idle_event = asyncio.Event()
        self._quiet_timer: Optional[asyncio.TimerHandle] = None
        self._attached = False
        self._window_open = False
        self.requests_seen = 0

    def start(self) -> None:
        """Attach network listeners. Must be called before navigation so no
        request is missed; idle detection itself waits for open_window()."""
        if self._attached:
            return
        self.page.on("request", self._on_request)
        self.page.on("requestfinished", self._on_request_done)
        self.page.on("requestfailed", self._on_request_done)
        self._attached = True

    def open_window(self) -> None:
        """Start (or restart) idle detection from the current request count.

        Called once the document has been parsed, so the quiet window cannot
        elapse while only the main document is still downloading.
        """
        self._cancel_timer()
        self._idle_event.clear()
        self._window_open = True
        self._evaluate()

    def stop(self) -> None:
        """Detach listeners and cancel any pending quiet timer."""
        self._cancel_timer()
        if not self._attached:
            return
        for event, handler in (
            ("request", self._on_request),
            ("requestfinished", self._on_request_done),
            ("requestfailed", self._on_request_done),
        ):
            try:
                self.page.remove_listener(event, handler)
            except Exception as e:
                logger.debug(f"Failed to remove {event} listener: {e}")
        self._attached = False

    async def wait_for_idle(self, timeout_s: float) -> None:
        """Block until the quiet window has elapsed.

        Raises:
            asyncio.TimeoutError: If the page never went idle within timeout_s
        """
        await asyncio.wait_for(self._idle_event.wait(), timeout=max(timeout_s, 0))

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    @property
    def is_idle(self) -> bool:
        return self._idle_event.is_set()

    def _on_request(self, request: Request) -> None:
        self._inflight.add(request)
        self.requests_seen += 1
        self._evaluate()

    def _on_request_done(self, request: Request) -> None:
        self._inflight.discard(request)
        self._evaluate()

    def _evaluate(self) -> None:
        if not self._window_open:
            return

        if len(self._inflight) > self.max_inflight:
            self._cancel_timer()
            self._idle_event.clear()
            return

        if self._quiet_timer is None and not self._idle_event.is_set():
            loop = asyncio.get_running_loop()
            self._quiet_timer = loop.call_later(self.quiet_ms / 1000.0, self._on_quiet)

    def _on_quiet(self) -> None:
        self._quiet_timer = None
        if len(self._inflight) <= self.max_inflight:
            logger.debug(f"Network idle reached ({len(self._inflight)} in flight, {self.requests_seen} seen)")
            self._idle_event.set()

    def _cancel_timer(self) -> None:
        if self._quiet_timer is not None:
            self._quiet_timer.cancel()
            self._quiet_timer = None
