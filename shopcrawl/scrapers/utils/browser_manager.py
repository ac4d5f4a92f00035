"""Scoped Playwright browser session for a crawl run.

A session owns one browser and one context for the lifetime of a run and is
always torn down on exit. Pages are handed out through an async context
manager so every page is closed, including on the per-item error path.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
)

from shopcrawl.core.exceptions import BrowserLaunchError
from shopcrawl.scrapers.utils.retry import navigation_retry

logger = structlog.get_logger(__name__)


class BrowserSession:
    """Playwright browser lifecycle for one crawl run."""

    def __init__(
        self,
        headless: bool = True,
        page_timeout_ms: int = 30000,
        locale: str = "en-US",
        block_resources: bool = True,
    ):
        self._headless = headless
        self.page_timeout_ms = page_timeout_ms
        self._locale = locale
        self._block_resources = block_resources
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @classmethod
    def from_settings(cls, settings, locale: str = "en-US") -> "BrowserSession":
        return cls(
            headless=settings.HEADLESS,
            page_timeout_ms=settings.PAGE_LOAD_TIMEOUT_MS,
            locale=locale,
        )

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Launch the browser and open the shared context.

        Raises:
            BrowserLaunchError: if Playwright cannot start a browser
        """
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=["--disable-dev-shm-usage", "--no-sandbox"],
            )
            self._context = await self._browser.new_context(
                viewport={"width": 1920, "height": 1080},
                locale=self._locale,
                java_script_enabled=True,
            )
            # Fonts and media are never parsed; image URLs are read from the DOM
            if self._block_resources:
                await self._context.route(
                    "**/*.{woff,woff2,ttf,eot,mp4,webm}",
                    lambda route: route.abort(),
                )
        except PlaywrightError as e:
            await self.close()
            raise BrowserLaunchError(f"Could not launch browser: {e}") from e

        logger.info("browser_started", headless=self._headless, locale=self._locale)

    async def close(self) -> None:
        """Close context, browser and driver. Safe to call more than once."""
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.warning("browser_context_close_failed", error=str(e))
            self._context = None

        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning("browser_close_failed", error=str(e))
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("browser_stopped")

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Open a page that is closed when the block exits."""
        if self._context is None:
            raise BrowserLaunchError("Browser session is not started")

        page = await self._context.new_page()
        page.set_default_timeout(self.page_timeout_ms)
        try:
            yield page
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.debug("page_close_failed", error=str(e))

    @navigation_retry
    async def navigate(self, page: Page, url: str) -> None:
        """Load ``url``; a timeout is retried once before it propagates."""
        logger.debug("navigating", url=url)
        await page.goto(url, wait_until="domcontentloaded", timeout=self.page_timeout_ms)
