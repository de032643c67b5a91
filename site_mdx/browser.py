"""Shared headless-browser handle and per-conversion page lifecycle."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import BLOCKED_RESOURCE_TYPES, BrowserConfig
from .errors import BrowserLaunchError, NavigationError

logger = logging.getLogger("site_mdx")

Launcher = Callable[[BrowserConfig], Awaitable[Browser]]
DriverStarter = Callable[[], Awaitable[Playwright]]


async def _start_playwright() -> Playwright:
    return await async_playwright().start()


@dataclass
class PageOptions:
    """Per-page overrides applied on top of the pool's browser config."""

    user_agent: Optional[str] = None
    viewport: Optional[Dict[str, int]] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)
    block_resources: Optional[bool] = None
    navigation_timeout: Optional[float] = None


class BrowserPool:
    """Owns one lazily launched browser and hands out single-use pages.

    Concurrent callers that arrive while the browser is still starting all
    await the same launch task, so at most one browser process exists. An
    externally supplied browser is used as-is and never closed here.
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        browser: Optional[Browser] = None,
        launcher: Optional[Launcher] = None,
        start_driver: Optional[DriverStarter] = None,
    ) -> None:
        self.config = config or BrowserConfig()
        self._external = browser
        self._launcher = launcher
        self._start_driver = start_driver or _start_playwright
        self._browser: Optional[Browser] = None
        self._playwright: Optional[Playwright] = None
        self._launch_task: Optional["asyncio.Future[Browser]"] = None
        self._in_flight = 0
        self.launch_count = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def is_alive(self) -> bool:
        browser = self._external or self._browser
        return browser is not None and browser.is_connected()

    async def _launch_chromium(self, config: BrowserConfig) -> Browser:
        """Launch Chromium on the pool's single Playwright driver.

        The driver is reused across relaunches and stopped again when the
        launch itself fails, so a retry never leaves an orphaned driver.
        """
        if self._playwright is None:
            self._playwright = await self._start_driver()
        try:
            return await self._playwright.chromium.launch(
                headless=config.headless,
                args=list(config.launch_args),
            )
        except Exception:
            driver, self._playwright = self._playwright, None
            try:
                await driver.stop()
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Error stopping Playwright driver: %s", exc)
            raise

    async def _launch(self) -> Browser:
        logger.info("Launching headless browser")
        launcher = self._launcher or self._launch_chromium
        browser = await launcher(self.config)
        self.launch_count += 1
        browser.on("disconnected", self._on_disconnected)
        self._browser = browser
        return browser

    def _on_disconnected(self, *_: Any) -> None:
        logger.warning("Browser disconnected, clearing cached instance")
        self._browser = None
        self._launch_task = None

    async def get_browser(self) -> Browser:
        """Return the shared browser, launching it on first demand."""
        if self._external is not None:
            return self._external
        if self._browser is not None and self._browser.is_connected():
            return self._browser

        if self._launch_task is None or self._launch_task.done():
            self._launch_task = asyncio.ensure_future(self._launch())
        task = self._launch_task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._launch_task is task:
                self._launch_task = None
            logger.error("Browser launch failed: %s", exc)
            raise BrowserLaunchError(f"Failed to launch browser: {exc}") from exc

    async def acquire_page(self, options: Optional[PageOptions] = None) -> Page:
        """Create and configure a fresh page owned by a single conversion."""
        options = options or PageOptions()
        browser = await self.get_browser()
        headers = {**self.config.extra_headers, **options.extra_headers}
        page = await browser.new_page(
            viewport=options.viewport or self.config.viewport,
            user_agent=options.user_agent or self.config.user_agent,
            extra_http_headers=headers or None,
        )
        self._in_flight += 1
        try:
            timeout = options.navigation_timeout or self.config.navigation_timeout
            page.set_default_navigation_timeout(timeout * 1000)
            block = self.config.block_resources if options.block_resources is None else options.block_resources
            if block:
                await page.route("**/*", _block_heavy_resources)
        except Exception:
            await self.release(page)
            raise
        return page

    async def release(self, page: Page) -> None:
        """Close a page (never the browser)."""
        try:
            await page.close()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Error closing page: %s", exc)
        finally:
            self._in_flight = max(0, self._in_flight - 1)

    @asynccontextmanager
    async def page(self, options: Optional[PageOptions] = None) -> AsyncIterator[Page]:
        page = await self.acquire_page(options)
        try:
            yield page
        finally:
            await self.release(page)

    async def shutdown(self) -> None:
        """Close the browser this pool launched and stop Playwright."""
        if self._external is not None:
            logger.debug("Leaving externally supplied browser open")
            return
        task = self._launch_task
        if task is not None and not task.done():
            try:
                await task
            except Exception:  # pylint: disable=broad-except
                pass
        browser, self._browser, self._launch_task = self._browser, None, None
        if browser is not None:
            try:
                await browser.close()
                logger.info("Browser closed")
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Error closing browser: %s", exc)
        if self._playwright is not None:
            playwright, self._playwright = self._playwright, None
            await playwright.stop()


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


def describe_navigation_error(exc: BaseException) -> str:
    """Turn a low-level navigation failure into a readable message."""
    message = str(exc)
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return "The page took too long to load. Please try again later."
    if "net::ERR_NAME_NOT_RESOLVED" in message:
        return "The website could not be found. Please check the URL and try again."
    if "net::ERR_CONNECTION_REFUSED" in message:
        return "The connection to the website was refused. The server might be down."
    return f"Navigation failed: {message}"


async def navigate(page: Page, url: str, config: Optional[BrowserConfig] = None) -> str:
    """Load ``url`` in ``page`` and return the final URL after redirects."""
    config = config or BrowserConfig()
    logger.info("Loading %s", url)
    try:
        response = await page.goto(
            url,
            wait_until=config.wait_until,
            timeout=config.navigation_timeout * 1000,
        )
    except Exception as exc:  # pylint: disable=broad-except
        raise NavigationError(describe_navigation_error(exc)) from exc
    if response is not None and response.status >= 400:
        raise NavigationError(f"Failed to fetch URL: HTTP {response.status}")
    return page.url
