"""Capture engine: renders URL x viewport screenshots through the browser pool."""

from __future__ import annotations

import asyncio
import io
import logging
import time
from datetime import datetime

from PIL import Image
from playwright.async_api import Page

from visdiff.browser.manager import BrowserManager
from visdiff.errors import CaptureError, describe_error
from visdiff.models.capture import CaptureMetadata, CaptureResult, CaptureSummary, Dimensions
from visdiff.models.config import CaptureOptions, Viewport

logger = logging.getLogger(__name__)

# Full-page screenshots of long pages exceed Pillow's decompression-bomb limit
Image.MAX_IMAGE_PIXELS = None


class CaptureEngine:
    """Captures screenshots for every URL/viewport pair.

    Each capture is a single attempt. A failed navigation, timeout or
    screenshot is recorded on its ``CaptureResult`` and the rest of the
    batch carries on.
    """

    def __init__(
        self,
        browser_manager: BrowserManager,
        image_format: str = "png",
        jpeg_quality: int | None = None,
    ):
        self.browser_manager = browser_manager
        self.image_format = image_format
        self.jpeg_quality = jpeg_quality

    async def capture_all(
        self, urls: list[str], viewports: list[Viewport], options: CaptureOptions,
    ) -> CaptureSummary:
        """Capture every (url, viewport) pair, URL-major, in a stable order."""
        tasks = [(url, viewport) for url in urls for viewport in viewports]
        logger.info("Capturing %d screenshot(s) (%d URL(s) x %d viewport(s))",
                    len(tasks), len(urls), len(viewports))

        # One in-flight capture per pooled page
        semaphore = asyncio.Semaphore(max(1, self.browser_manager.options.max_pages))
        total = len(tasks)

        async def _run_one(index: int, url: str, viewport: Viewport) -> CaptureResult:
            async with semaphore:
                logger.debug("Capture [%d/%d]: %s @ %s", index + 1, total, url, viewport.name)
                return await self.capture(url, viewport, options)

        results = list(await asyncio.gather(
            *(_run_one(i, url, vp) for i, (url, vp) in enumerate(tasks))
        ))

        summary = CaptureSummary.from_results(results)
        logger.info("Capture complete: %d succeeded, %d failed",
                    summary.successful, summary.failed)
        return summary

    async def capture(self, url: str, viewport: Viewport, options: CaptureOptions) -> CaptureResult:
        """Capture a single URL at a single viewport."""
        start = time.monotonic()
        page: Page | None = None
        try:
            page = await self.browser_manager.get_page(viewport.device_scale_factor)
            image = await self._render(page, url, viewport, options)
            dimensions = _image_dimensions(image)
            load_time_ms = int((time.monotonic() - start) * 1000)
            logger.debug("Captured %s @ %s: %dx%d, %d bytes in %dms", url, viewport.name,
                         dimensions.width, dimensions.height, len(image), load_time_ms)
            return CaptureResult(
                url=url,
                viewport=viewport,
                image=image,
                timestamp=datetime.now(),
                success=True,
                metadata=CaptureMetadata(
                    dimensions=dimensions,
                    image_size_bytes=len(image),
                    load_time_ms=load_time_ms,
                ),
            )
        except Exception as e:
            logger.error("Capture failed for %s @ %s: %s", url, viewport.name, e)
            return CaptureResult(
                url=url,
                viewport=viewport,
                timestamp=datetime.now(),
                success=False,
                error=describe_error(e),
                metadata=CaptureMetadata(),
            )
        finally:
            if page is not None:
                try:
                    await self.browser_manager.release_page(page)
                except Exception as e:
                    logger.warning("Failed to release page: %s", e)

    async def _render(self, page: Page, url: str, viewport: Viewport, options: CaptureOptions) -> bytes:
        await page.set_viewport_size({"width": viewport.width, "height": viewport.height})

        wait_until = "networkidle" if options.wait_for_network_idle else "load"
        await page.goto(url, timeout=options.timeout_ms, wait_until=wait_until)

        if options.wait_for_selector:
            await page.wait_for_selector(options.wait_for_selector, timeout=options.timeout_ms)

        if options.custom_script:
            await page.evaluate(options.custom_script)

        if options.animation_delay_ms:
            await page.wait_for_timeout(options.animation_delay_ms)

        screenshot_kwargs: dict = {
            "type": self.image_format,
            "full_page": options.full_page,
            "timeout": options.timeout_ms,
        }
        if self.image_format == "png":
            screenshot_kwargs["omit_background"] = options.omit_background
        elif self.jpeg_quality is not None:
            screenshot_kwargs["quality"] = self.jpeg_quality
        return await page.screenshot(**screenshot_kwargs)


def _image_dimensions(image: bytes) -> Dimensions:
    if not image:
        raise CaptureError("Screenshot returned no image data")
    try:
        with Image.open(io.BytesIO(image)) as img:
            width, height = img.size
    except Exception as e:
        raise CaptureError(f"Screenshot is not a readable image: {e}") from e
    return Dimensions(width=width, height=height)
