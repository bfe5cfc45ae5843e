"""Browser fingerprint countermeasures applied before navigation.

The evasion bundle is a fixed, ordered list of steps. The user-agent override
comes first so no script the browser runs on its own sees the headless
signature. The webdriver script and the playwright-stealth fingerprint bundle
follow as init scripts and run in every frame before page code.
"""

import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright_stealth import Stealth

from .errors import SessionUnavailableError
from .session_manager import Session

logger = logging.getLogger(__name__)


# Fixed desktop signature, independent of the emulated viewport.
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
DEFAULT_PLATFORM = "Win32"

WEBDRIVER_SCRIPT = """
Object.defineProperty(Navigator.prototype, 'webdriver', { get: () => false });
"""


EvasionStep = Callable[[Session], Awaitable[None]]


class EvasionLayer:
    """Applies the evasion bundle to a session, once."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
        platform: str = DEFAULT_PLATFORM,
        stealth: Optional[Stealth] = None,
    ):
        self.user_agent = user_agent
        self.accept_language = accept_language
        self.platform = platform
        self.stealth = stealth or Stealth()

        self.steps: List[Tuple[str, EvasionStep]] = [
            ("user_agent_override", self._override_user_agent),
            ("webdriver_flag", self._suppress_webdriver_flag),
            ("fingerprint_bundle", self._apply_fingerprint_bundle),
        ]

    async def apply(self, session: Session) -> None:
        """Apply every evasion step in order.

        Idempotent: a session that already carries the bundle is left as is.

        Raises:
            SessionUnavailableError: If the session is closed or crashed
        """
        if session.evasion_applied:
            logger.debug(f"Evasion already applied to session {session.session_id}")
            return

        if not session.is_alive:
            raise SessionUnavailableError(
                "Cannot apply evasion to a closed session",
                session_id=session.session_id
            )

        for name, step in self.steps:
            try:
                await step(session)
            except PlaywrightError as e:
                raise SessionUnavailableError(
                    f"Evasion step '{name}' failed: {e}",
                    session_id=session.session_id
                ) from e

        session.evasion_applied = True
        logger.debug(f"Evasion bundle applied to session {session.session_id}")

    async def _override_user_agent(self, session: Session) -> None:
        cdp = session.cdp
        if cdp is None:
            cdp = await session.context.new_cdp_session(session.page)
            session.cdp = cdp
        await cdp.send("Network.setUserAgentOverride", {
            "userAgent": self.user_agent,
            "acceptLanguage": self.accept_language,
            "platform": self.platform,
        })

    async def _suppress_webdriver_flag(self, session: Session) -> None:
        await session.page.add_init_script(WEBDRIVER_SCRIPT)

    async def _apply_fingerprint_bundle(self, session: Session) -> None:
        # Plugins, vendor, languages, chrome.runtime and permissions as one unit
        await self.stealth.apply_stealth_async(session.page)


def create_evasion_layer(user_agent: Optional[str] = None) -> EvasionLayer:
    """Create an evasion layer, optionally with a deployment-specific agent string."""
    return EvasionLayer(user_agent=user_agent or DEFAULT_USER_AGENT)
