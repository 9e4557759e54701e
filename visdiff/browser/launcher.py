"""Thin wrappers over Playwright's Chromium launch and page creation."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, Page, Playwright

DEFAULT_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

# Placeholder size until the capture engine applies the real viewport
DEFAULT_PAGE_SIZE = {"width": 1280, "height": 720}


async def launch_browser(
    playwright: Playwright,
    headless: bool = True,
    args: Optional[list[str]] = None,
) -> Browser:
    """Launch headless Chromium with sandbox-friendly arguments."""
    return await playwright.chromium.launch(
        headless=headless,
        args=list(DEFAULT_ARGS if args is None else args),
    )


async def open_page(browser: Browser, device_scale_factor: float = 1.0) -> Page:
    """Open a page in its own isolated context.

    The device scale factor is fixed for the lifetime of a Playwright
    context, so pages are created per scale factor rather than reconfigured.
    """
    return await browser.new_page(
        viewport=dict(DEFAULT_PAGE_SIZE),
        device_scale_factor=device_scale_factor,
    )
