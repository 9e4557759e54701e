"""Browser manager: owns the Chromium process and a pool of reusable pages."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import psutil
from playwright.async_api import Browser, Page, Playwright, async_playwright

from visdiff.errors import BrowserProcessError

from .launcher import DEFAULT_ARGS, launch_browser, open_page

logger = logging.getLogger(__name__)

RESET_URL = "about:blank"
RESET_TIMEOUT_MS = 5000
# How long a caller waits between pool checks when every page is checked out
SLOT_POLL_SECONDS = 0.1


@dataclass
class BrowserOptions:
    headless: bool = True
    args: list[str] = field(default_factory=lambda: list(DEFAULT_ARGS))
    max_pages: int = 5


def _index_of(pages: list[Page], page: Page) -> int:
    for i, p in enumerate(pages):
        if p is page:
            return i
    return -1


class BrowserManager:
    """Manages one headless browser and a bounded set of reusable pages.

    A page belongs to exactly one caller between ``get_page()`` and
    ``release_page()``. Released pages are reset to ``about:blank`` and kept
    for reuse rather than closed. If the browser process dies, the next
    ``get_page()`` notices and relaunches it. ``close()`` and ``restart()``
    never raise; failures while tearing down are logged as warnings.
    """

    def __init__(self, options: BrowserOptions | None = None):
        self.options = options or BrowserOptions()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._pool: list[Page] = []
        self._active: list[Page] = []
        self._scale: dict[Page, float] = {}
        self._opening = 0
        self._launch_lock = asyncio.Lock()
        self._slot_freed = asyncio.Condition()

    async def __aenter__(self) -> "BrowserManager":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def launch(self) -> None:
        """Start the browser. Does nothing if it is already running."""
        async with self._launch_lock:
            if self.is_running():
                return
            if self._browser is not None or self._playwright is not None:
                # Left over from a crashed process
                await self._teardown()

            logger.debug("Launching Chromium (headless=%s)", self.options.headless)
            try:
                self._playwright = await async_playwright().start()
                self._browser = await launch_browser(
                    self._playwright,
                    headless=self.options.headless,
                    args=self.options.args,
                )
            except Exception as e:
                await self._stop_playwright()
                self._browser = None
                raise BrowserProcessError(f"Failed to launch browser: {e}") from e

            self._browser.on("disconnected", self._on_disconnected)
            logger.info("Browser launched")

    async def restart(self) -> None:
        """Tear down every page and the process, then launch a fresh browser."""
        logger.info("Restarting browser")
        await self._teardown()
        try:
            await self.launch()
        except BrowserProcessError as e:
            logger.warning("Browser restart failed: %s", e)

    async def close(self) -> None:
        """Shut the browser down and forget all pages. Safe to call repeatedly."""
        if self._browser is None and self._playwright is None and not self._pool and not self._active:
            return
        logger.debug("Closing browser (%d pooled, %d active pages)",
                     len(self._pool), len(self._active))
        await self._teardown()
        logger.info("Browser closed")

    def _on_disconnected(self, browser: Browser) -> None:
        if browser is not self._browser:
            return
        logger.warning("Browser disconnected; it will be relaunched on next use")
        self._browser = None
        self._pool.clear()
        self._active.clear()
        self._scale.clear()

    async def _teardown(self) -> None:
        pages = self._pool + self._active
        browser = self._browser
        self._pool = []
        self._active = []
        self._scale = {}
        self._browser = None

        for page in pages:
            await self._close_page_quietly(page)

        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning("Failed to close browser: %s", e)

        await self._stop_playwright()

        async with self._slot_freed:
            self._slot_freed.notify_all()

    async def _stop_playwright(self) -> None:
        playwright = self._playwright
        self._playwright = None
        if playwright is None:
            return
        try:
            await playwright.stop()
        except Exception as e:
            logger.warning("Failed to stop Playwright: %s", e)

    @staticmethod
    async def _close_page_quietly(page: Page) -> None:
        try:
            if not page.is_closed():
                await page.close()
        except Exception as e:
            logger.warning("Failed to close page: %s", e)

    # ------------------------------------------------------------------
    # Page pool
    # ------------------------------------------------------------------

    async def get_page(self, device_scale_factor: float | None = None) -> Page:
        """Check out a page, reusing a pooled one when its scale factor matches.

        Blocks while ``max_pages`` pages are checked out. A dead browser is
        relaunched before the page is handed out.
        """
        scale = device_scale_factor or 1.0
        relaunched = False

        while True:
            if not self.is_running():
                await self.launch()
            browser = self._browser

            async with self._slot_freed:
                page = self._take_pooled(scale)
                if page is not None:
                    self._active.append(page)
                    logger.debug("Reusing pooled page (%d active)", len(self._active))
                    return page
                if len(self._active) + self._opening >= self.options.max_pages:
                    try:
                        await asyncio.wait_for(self._slot_freed.wait(), SLOT_POLL_SECONDS)
                    except asyncio.TimeoutError:
                        pass
                    continue
                self._opening += 1

            try:
                page = await open_page(browser, device_scale_factor=scale)
            except Exception as e:
                async with self._slot_freed:
                    self._opening -= 1
                    self._slot_freed.notify_all()
                if not self.is_running() and not relaunched:
                    logger.warning("Browser died while opening a page, relaunching: %s", e)
                    relaunched = True
                    continue
                raise BrowserProcessError(f"Failed to open page: {e}") from e

            async with self._slot_freed:
                self._opening -= 1
                if browser is self._browser and self.is_running():
                    self._active.append(page)
                    self._scale[page] = scale
                    logger.debug("Opened new page (%d active)", len(self._active))
                    return page
            await self._close_page_quietly(page)
            raise BrowserProcessError("Browser was closed while a page was being opened")

    def _take_pooled(self, scale: float) -> Page | None:
        for i, page in enumerate(self._pool):
            if self._scale.get(page, 1.0) == scale:
                return self._pool.pop(i)
        return None

    async def release_page(self, page: Page) -> None:
        """Return a checked-out page to the idle pool without destroying it."""
        async with self._slot_freed:
            i = _index_of(self._active, page)
            if i >= 0:
                self._active.pop(i)
            self._slot_freed.notify_all()

        if i < 0 or not self.is_running():
            # Stale handle from before a restart or crash
            self._scale.pop(page, None)
            await self._close_page_quietly(page)
            return

        try:
            if page.is_closed():
                self._scale.pop(page, None)
                return
            await page.goto(RESET_URL, wait_until="load", timeout=RESET_TIMEOUT_MS)
        except Exception as e:
            logger.debug("Could not reset page, discarding it: %s", e)
            self._scale.pop(page, None)
            await self._close_page_quietly(page)
            return

        async with self._slot_freed:
            if self.is_running() and len(self._pool) < self.options.max_pages:
                self._pool.append(page)
                self._slot_freed.notify_all()
                return
        self._scale.pop(page, None)
        await self._close_page_quietly(page)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def get_pooled_page_count(self) -> int:
        return len(self._pool)

    def get_active_page_count(self) -> int:
        return len(self._active)

    def get_memory_usage(self) -> int:
        """Resident memory in bytes of this process and its browser children."""
        if not self.is_running():
            return 0
        try:
            proc = psutil.Process()
            total = proc.memory_info().rss
            for child in proc.children(recursive=True):
                try:
                    total += child.memory_info().rss
                except psutil.Error:
                    continue
            return total
        except psutil.Error:
            return 0
