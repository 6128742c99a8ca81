import logging
from typing import Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Error as PlaywrightError,
)

from .errors import BrowserError, BrowserTimeoutError, NavigationError, translate_playwright_error
from .event_log import log_event

logger = logging.getLogger("browser_session")


class BrowserSession:
    """
    Owns the Playwright instance, browser, context and the single page a run
    drives. Use as ``async with BrowserSession(...) as session``.
    """

    def __init__(self, headless: bool = False, navigation_timeout: int = 40000, action_timeout: int = 30000,
                 viewport: Optional[dict] = None):
        self.headless = headless
        self._navigation_timeout = navigation_timeout
        self._action_timeout = action_timeout
        self._viewport = viewport or {'width': 1440, 'height': 1024}
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    @classmethod
    def from_config(cls, config: dict, headless: Optional[bool] = None) -> "BrowserSession":
        settings = config.get('agent_settings', {})
        return cls(
            headless=settings.get('headless', False) if headless is None else headless,
            navigation_timeout=settings.get('navigation_timeout', 40000),
            action_timeout=settings.get('action_timeout', 30000),
        )

    async def start(self) -> Page:
        """
        Launches Chromium and opens a page with the configured default timeouts.

        Raises:
            BrowserError: If Playwright or the browser cannot be started.
        """
        if self._playwright and self.page:
            logger.debug("Browser session already started.")
            return self.page

        logger.info(f"Starting browser session: Headless={self.headless}, Nav Timeout={self._navigation_timeout}ms")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            self._context = await self._browser.new_context(viewport=self._viewport)
            self._context.set_default_navigation_timeout(self._navigation_timeout)
            self._context.set_default_timeout(self._action_timeout)
            self.page = await self._context.new_page()
        except Exception as e:
            log_event(logger, "CRITICAL", "EVT-BRW-02", error=str(e))
            await self.close()
            raise BrowserError(f"Failed to start browser session: {e}") from e

        log_event(logger, "INFO", "EVT-BRW-01", headless=self.headless)
        return self.page

    async def goto(self, url: str) -> None:
        """
        Raises:
            BrowserError: The session is gone.
            NavigationError: Any other navigation failure, including timeouts.
        """
        if self.page is None:
            raise BrowserError("Browser session not started")
        logger.info(f"Navigating to {url}")
        try:
            await self.page.goto(url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            lost = translate_playwright_error(e, f"navigate to {url}")
            if lost is not None and not isinstance(lost, BrowserTimeoutError):
                raise lost from e
            raise NavigationError(f"Could not navigate to {url}: {e}", target_url=url) from e
        logger.info("✅ Navigation successful.")

    async def close(self) -> None:
        """Closes page, context, browser and Playwright, logging errors instead of raising them."""
        logger.info("Closing browser session...")
        if self.page and not self.page.is_closed():
            try:
                await self.page.close()
            except Exception as e:
                logger.warning(f"Error closing page: {e}")
        self.page = None

        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                logger.warning(f"Error closing context: {e}")
            self._context = None

        if self._browser and self._browser.is_connected():
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
        self._browser = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None
        logger.info("Browser session closed.")

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
