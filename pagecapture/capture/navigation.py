"""Navigation with redirect control and load-completion detection.

This module provides the RedirectPolicy state machine that decides, per
intercepted request, whether a top-level navigation belongs to a redirect
chain and must be aborted, and the NavigationController that arms the policy
on a page, navigates, waits for network idle and for the document body.

Playwright only hands the first request of a server-side redirect chain to
route handlers, so when redirects are not followed the first main-frame
navigation is fetched with redirects disabled and a 3xx answer is rendered
as-is with its Location header removed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from urllib.parse import urljoin

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    Request,
    Response,
    Route,
    TimeoutError as PlaywrightTimeoutError,
)

from .errors import (
    ContentNotReadyError,
    NavigationAbortedError,
    NavigationTimeoutError,
    SessionUnavailableError,
)
from .network_idle import NetworkIdleTracker
from .session_manager import Session

logger = logging.getLogger(__name__)


class RedirectState(str, Enum):
    """States of the redirect interception state machine."""
    IDLE = "idle"
    INTERCEPTING = "intercepting"
    CONTINUING = "continuing"
    ABORTED = "aborted"


class RouteDecision(str, Enum):
    """Outcome for a single intercepted request."""
    CONTINUE = "continue"
    ABORT = "abort"


class RedirectPolicy:
    """Two-way allow/abort decision for requests seen during one navigation.

    A request is aborted only when it is a main-frame navigation that is part
    of a redirect chain: it has a redirect predecessor, or an earlier
    main-frame navigation was already let through. Sub-resources and the
    original navigation always continue.
    """

    def __init__(self):
        self.state = RedirectState.IDLE
        self.first_navigation_seen = False
        self.aborted_urls: List[str] = []

    @property
    def armed(self) -> bool:
        return self.state is not RedirectState.IDLE

    @property
    def redirect_blocked(self) -> bool:
        return bool(self.aborted_urls)

    def arm(self) -> None:
        if self.state is RedirectState.IDLE:
            self.state = RedirectState.INTERCEPTING

    def decide(
        self,
        url: str,
        is_navigation: bool,
        is_main_frame: bool,
        has_redirect_chain: bool = False
    ) -> RouteDecision:
        """Decide whether an outgoing request may proceed."""
        if not self.armed:
            return RouteDecision.CONTINUE

        top_level = is_navigation and is_main_frame
        if top_level and (has_redirect_chain or self.first_navigation_seen):
            self.state = RedirectState.ABORTED
            self.aborted_urls.append(url)
            logger.info(f"Aborted redirect navigation to {url}")
            return RouteDecision.ABORT

        if top_level:
            self.first_navigation_seen = True
        self.state = RedirectState.CONTINUING
        return RouteDecision.CONTINUE


@dataclass
class NavigationOutcome:
    """What a completed navigation produced."""

    requested_url: str
    final_url: Optional[str] = None
    status_code: Optional[int] = None
    redirect_blocked: bool = False
    aborted_urls: List[str] = field(default_factory=list)
    duration_ms: Optional[float] = None


class NavigationController:
    """Arms redirect control on a session and navigates it to a URL."""

    def __init__(
        self,
        navigation_timeout_ms: int = 30000,
        content_timeout_ms: int = 10000,
        idle_max_inflight: int = 2,
        idle_quiet_ms: int = 500,
        ready_selector: str = "body",
    ):
        """Initialize navigation controller.

        Args:
            navigation_timeout_ms: Deadline for the whole navigation phase
            content_timeout_ms: Deadline for the ready selector after navigation
            idle_max_inflight: Requests tolerated in flight while idle
            idle_quiet_ms: Quiet window that counts as network idle
            ready_selector: Element whose presence marks content readiness
        """
        self.navigation_timeout_ms = navigation_timeout_ms
        self.content_timeout_ms = content_timeout_ms
        self.idle_max_inflight = idle_max_inflight
        self.idle_quiet_ms = idle_quiet_ms
        self.ready_selector = ready_selector

        self.policy = RedirectPolicy()
        self._page: Optional[Page] = None
        self._upstream_error: Optional[str] = None

    async def arm_redirect_policy(self, session: Session, follow_redirects: bool) -> None:
        """Install redirect interception when redirects must not be followed.

        Raises:
            SessionUnavailableError: If the page can no longer be routed
        """
        if follow_redirects:
            logger.debug("Redirects followed natively, no interception armed")
            return

        if self.policy.armed:
            return

        self._page = session.page
        try:
            await session.page.route("**/*", self._handle_route)
        except PlaywrightError as e:
            raise SessionUnavailableError(
                f"Failed to arm redirect policy: {e}",
                session_id=session.session_id
            ) from e

        self.policy.arm()
        logger.debug(f"Redirect policy armed on session {session.session_id}")

    async def navigate(
        self,
        session: Session,
        url: str,
        timeout_ms: Optional[int] = None
    ) -> NavigationOutcome:
        """Navigate and block until the page is idle and its body is present.

        Args:
            session: Session to navigate
            url: Target URL
            timeout_ms: Navigation deadline override

        Returns:
            NavigationOutcome describing the rendered page

        Raises:
            NavigationTimeoutError: Page did not settle within the deadline
            NavigationAbortedError: Target failed to load (DNS, connection, TLS)
            ContentNotReadyError: Body never appeared within the content bound
        """
        timeout_ms = timeout_ms or self.navigation_timeout_ms
        page = session.page
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + timeout_ms / 1000.0

        tracker = NetworkIdleTracker(page, self.idle_max_inflight, self.idle_quiet_ms)
        tracker.start()
        try:
            response = await self._goto(page, url, timeout_ms)
            tracker.open_window()
            try:
                await tracker.wait_for_idle(deadline - loop.time())
            except asyncio.TimeoutError:
                raise NavigationTimeoutError(
                    f"Network did not go idle within {timeout_ms}ms "
                    f"({tracker.inflight_count} requests in flight)",
                    details={'url': url, 'timeout_ms': timeout_ms}
                ) from None
        finally:
            tracker.stop()

        await self._wait_for_content(page, url)

        outcome = NavigationOutcome(
            requested_url=url,
            final_url=page.url,
            status_code=response.status if response else None,
            redirect_blocked=self.policy.redirect_blocked,
            aborted_urls=list(self.policy.aborted_urls),
            duration_ms=(loop.time() - started) * 1000,
        )
        logger.debug(f"Navigation completed: {url} -> {outcome.final_url} ({outcome.duration_ms:.0f}ms)")
        return outcome

    async def _goto(self, page: Page, url: str, timeout_ms: int) -> Optional[Response]:
        try:
            return await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(
                f"Navigation to {url} timed out after {timeout_ms}ms",
                details={'url': url, 'timeout_ms': timeout_ms}
            ) from e
        except PlaywrightError as e:
            message = f"Navigation to {url} failed: {_summarize(e)}"
            if self._upstream_error:
                message += f" ({self._upstream_error})"
            raise NavigationAbortedError(message, details={'url': url}) from e

    async def _wait_for_content(self, page: Page, url: str) -> None:
        try:
            await page.wait_for_selector(
                self.ready_selector,
                state="attached",
                timeout=self.content_timeout_ms
            )
        except PlaywrightTimeoutError as e:
            raise ContentNotReadyError(
                f"'{self.ready_selector}' not present within {self.content_timeout_ms}ms",
                details={'url': url}
            ) from e
        except PlaywrightError as e:
            raise ContentNotReadyError(
                f"Content readiness check failed: {_summarize(e)}",
                details={'url': url}
            ) from e

    async def _handle_route(self, route: Route) -> None:
        request = route.request
        is_navigation = request.is_navigation_request()
        is_main_frame = is_navigation and self._is_main_frame(request)
        has_chain = request.redirected_from is not None
        first = (
            is_navigation and is_main_frame
            and not has_chain
            and not self.policy.first_navigation_seen
        )

        decision = self.policy.decide(request.url, is_navigation, is_main_frame, has_chain)
        if decision is RouteDecision.ABORT:
            await route.abort("blockedbyclient")
        elif first:
            await self._fulfill_without_redirect(route)
        else:
            await route.fallback()

    async def _fulfill_without_redirect(self, route: Route) -> None:
        try:
            response = await route.fetch(max_redirects=0, timeout=self.navigation_timeout_ms)
        except PlaywrightError as e:
            self._upstream_error = _summarize(e)
            logger.debug(f"Upstream fetch failed for {route.request.url}: {self._upstream_error}")
            await route.abort("failed")
            return

        location = next(
            (v for k, v in response.headers.items() if k.lower() == "location"),
            None
        )
        if 300 <= response.status < 400 and location:
            target = urljoin(route.request.url, location)
            self.policy.decide(target, is_navigation=True, is_main_frame=True, has_redirect_chain=True)
            headers = {k: v for k, v in response.headers.items() if k.lower() != "location"}
            await route.fulfill(response=response, headers=headers)
            return

        await route.fulfill(response=response)

    def _is_main_frame(self, request: Request) -> bool:
        if self._page is None:
            return False
        try:
            return request.frame == self._page.main_frame
        except PlaywrightError:
            # Service worker requests have no frame
            return False


def _summarize(error: PlaywrightError) -> str:
    """First line of a Playwright error, without the call log."""
    text = getattr(error, "message", None) or str(error)
    return text.strip().splitlines()[0] if text.strip() else type(error).__name__
