"""Tests for the capture engine."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from visdiff.browser.manager import BrowserOptions
from visdiff.capture.engine import CaptureEngine
from visdiff.errors import BrowserProcessError
from visdiff.models.config import CaptureOptions


@pytest.fixture
def browser_manager(mock_page) -> Mock:
    manager = Mock()
    manager.options = BrowserOptions(max_pages=2)
    manager.get_page = AsyncMock(return_value=mock_page)
    manager.release_page = AsyncMock()
    return manager


@pytest.fixture
def engine(browser_manager) -> CaptureEngine:
    return CaptureEngine(browser_manager)


class TestCapture:

    @pytest.mark.asyncio
    async def test_successful_capture(self, engine, browser_manager, mock_page, desktop_viewport, capture_options):
        result = await engine.capture("https://example.com/", desktop_viewport, capture_options)

        assert result.success is True
        assert result.error is None
        assert result.url == "https://example.com/"
        assert result.viewport == desktop_viewport
        assert result.image == mock_page.screenshot.return_value
        assert result.metadata.dimensions.width == 20
        assert result.metadata.dimensions.height == 10
        assert result.metadata.image_size_bytes == len(result.image)
        assert result.metadata.load_time_ms >= 0

        mock_page.set_viewport_size.assert_awaited_once_with({"width": 1280, "height": 720})
        browser_manager.release_page.assert_awaited_once_with(mock_page)

    @pytest.mark.asyncio
    async def test_navigation_uses_load_without_network_idle(self, engine, mock_page, desktop_viewport, capture_options):
        await engine.capture("https://example.com/", desktop_viewport, capture_options)

        mock_page.goto.assert_awaited_once_with(
            "https://example.com/", timeout=5000, wait_until="load",
        )

    @pytest.mark.asyncio
    async def test_navigation_waits_for_network_idle(self, engine, mock_page, desktop_viewport):
        await engine.capture("https://example.com/", desktop_viewport, CaptureOptions())

        assert mock_page.goto.await_args.kwargs["wait_until"] == "networkidle"
        assert mock_page.goto.await_args.kwargs["timeout"] == 30000

    @pytest.mark.asyncio
    async def test_optional_steps_skipped_by_default(self, engine, mock_page, desktop_viewport, capture_options):
        await engine.capture("https://example.com/", desktop_viewport, capture_options)

        mock_page.wait_for_selector.assert_not_awaited()
        mock_page.evaluate.assert_not_awaited()
        mock_page.wait_for_timeout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_optional_steps_run_in_order(self, engine, mock_page, desktop_viewport):
        calls = []
        mock_page.wait_for_selector.side_effect = lambda *a, **k: calls.append("selector")
        mock_page.evaluate.side_effect = lambda *a, **k: calls.append("script")
        mock_page.wait_for_timeout.side_effect = lambda *a, **k: calls.append("delay")
        options = CaptureOptions(
            wait_for_selector="#app",
            custom_script="document.body.classList.add('frozen')",
            animation_delay_ms=250,
        )

        await engine.capture("https://example.com/", desktop_viewport, options)

        assert calls == ["selector", "script", "delay"]
        mock_page.wait_for_selector.assert_awaited_once_with("#app", timeout=30000)
        mock_page.evaluate.assert_awaited_once_with("document.body.classList.add('frozen')")
        mock_page.wait_for_timeout.assert_awaited_once_with(250)

    @pytest.mark.asyncio
    async def test_png_screenshot_options(self, engine, mock_page, desktop_viewport):
        options = CaptureOptions(full_page=False, omit_background=True)
        await engine.capture("https://example.com/", desktop_viewport, options)

        mock_page.screenshot.assert_awaited_once_with(
            type="png", full_page=False, timeout=30000, omit_background=True,
        )

    @pytest.mark.asyncio
    async def test_jpeg_screenshot_options(self, browser_manager, mock_page, desktop_viewport, capture_options):
        engine = CaptureEngine(browser_manager, image_format="jpeg", jpeg_quality=80)
        await engine.capture("https://example.com/", desktop_viewport, capture_options)

        kwargs = mock_page.screenshot.await_args.kwargs
        assert kwargs["type"] == "jpeg"
        assert kwargs["quality"] == 80
        assert "omit_background" not in kwargs

    @pytest.mark.asyncio
    async def test_scale_factor_requested_from_pool(self, engine, browser_manager, mobile_viewport, capture_options):
        await engine.capture("https://example.com/", mobile_viewport, capture_options)

        browser_manager.get_page.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_navigation_timeout_is_recorded(self, engine, browser_manager, mock_page, desktop_viewport, capture_options):
        mock_page.goto.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded")

        result = await engine.capture("https://example.com/slow", desktop_viewport, capture_options)

        assert result.success is False
        assert result.image == b""
        assert result.metadata.image_size_bytes == 0
        assert result.metadata.load_time_ms == 0
        assert result.error.startswith("TimeoutError")
        assert "5000ms" in result.error
        browser_manager.release_page.assert_awaited_once_with(mock_page)

    @pytest.mark.asyncio
    async def test_single_attempt_only(self, engine, mock_page, desktop_viewport, capture_options):
        mock_page.goto.side_effect = RuntimeError("net::ERR_CONNECTION_REFUSED")

        await engine.capture("http://192.0.2.1/", desktop_viewport, capture_options)

        assert mock_page.goto.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_screenshot_is_capture_error(self, engine, mock_page, desktop_viewport, capture_options):
        mock_page.screenshot.return_value = b""

        result = await engine.capture("https://example.com/", desktop_viewport, capture_options)

        assert result.success is False
        assert result.error == "CaptureError: Screenshot returned no image data"

    @pytest.mark.asyncio
    async def test_unreadable_screenshot_is_capture_error(self, engine, mock_page, desktop_viewport, capture_options):
        mock_page.screenshot.return_value = b"not an image"

        result = await engine.capture("https://example.com/", desktop_viewport, capture_options)

        assert result.success is False
        assert result.error.startswith("CaptureError: Screenshot is not a readable image")

    @pytest.mark.asyncio
    async def test_page_unavailable_is_recorded(self, engine, browser_manager, desktop_viewport, capture_options):
        browser_manager.get_page.side_effect = BrowserProcessError("Failed to launch browser")

        result = await engine.capture("https://example.com/", desktop_viewport, capture_options)

        assert result.success is False
        assert result.error == "BrowserProcessError: Failed to launch browser"
        browser_manager.release_page.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_release_failure_does_not_fail_capture(self, engine, browser_manager, desktop_viewport, capture_options):
        browser_manager.release_page.side_effect = RuntimeError("page crashed")

        result = await engine.capture("https://example.com/", desktop_viewport, capture_options)

        assert result.success is True


class TestCaptureAll:

    @pytest.mark.asyncio
    async def test_results_cover_every_pair_in_order(self, engine, desktop_viewport, mobile_viewport, capture_options):
        urls = ["https://example.com/", "https://example.com/about"]

        summary = await engine.capture_all(urls, [desktop_viewport, mobile_viewport], capture_options)

        assert summary.total == 4
        assert summary.successful == 4
        assert summary.failed == 0
        assert [(r.url, r.viewport.name) for r in summary.results] == [
            ("https://example.com/", "desktop"),
            ("https://example.com/", "mobile"),
            ("https://example.com/about", "desktop"),
            ("https://example.com/about", "mobile"),
        ]

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_other_captures(self, engine, mock_page, desktop_viewport, capture_options):
        async def goto(url, **kwargs):
            if "broken" in url:
                raise RuntimeError("net::ERR_NAME_NOT_RESOLVED")

        mock_page.goto.side_effect = goto
        urls = ["https://example.com/", "https://broken.invalid/", "https://example.com/about"]

        summary = await engine.capture_all(urls, [desktop_viewport], capture_options)

        assert summary.total == 3
        assert summary.successful == 2
        assert summary.failed == 1
        assert [r.success for r in summary.results] == [True, False, True]
        assert "ERR_NAME_NOT_RESOLVED" in summary.results[1].error

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_pool_size(self, browser_manager, desktop_viewport, capture_options):
        in_flight = 0
        peak = 0

        async def goto(url, **kwargs):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        page = browser_manager.get_page.return_value
        page.goto.side_effect = goto
        engine = CaptureEngine(browser_manager)
        urls = [f"https://example.com/p{i}" for i in range(6)]

        summary = await engine.capture_all(urls, [desktop_viewport], capture_options)

        assert summary.successful == 6
        assert 1 < peak <= 2

    @pytest.mark.asyncio
    async def test_empty_inputs(self, engine, capture_options, desktop_viewport):
        summary = await engine.capture_all([], [desktop_viewport], capture_options)
        assert summary.total == 0
        assert summary.results == []


def test_tall_screenshots_are_not_rejected_by_pillow():
    assert Image.MAX_IMAGE_PIXELS is None
