"""Pytest configuration and shared fixtures."""

import io
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image
from playwright.async_api import Browser, Page

from visdiff.models.config import (
    CaptureOptions,
    DiffOptions,
    StoragePaths,
    Viewport,
    VisDiffConfig,
)
from visdiff.storage.manager import StorageManager


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def desktop_viewport() -> Viewport:
    """Create a desktop viewport."""
    return Viewport(width=1280, height=720, name="desktop")


@pytest.fixture
def mobile_viewport() -> Viewport:
    """Create a mobile viewport with a retina scale factor."""
    return Viewport(width=375, height=667, name="mobile", device_scale_factor=2)


@pytest.fixture
def capture_options() -> CaptureOptions:
    """Capture options with short timeouts for tests."""
    return CaptureOptions(timeout_ms=5000, wait_for_network_idle=False)


@pytest.fixture
def diff_options() -> DiffOptions:
    return DiffOptions()


@pytest.fixture
def visdiff_config(desktop_viewport: Viewport, mobile_viewport: Viewport) -> VisDiffConfig:
    """Create a config with two viewports and two paths."""
    return VisDiffConfig(
        viewports=[desktop_viewport, mobile_viewport],
        paths=["https://example.com/", "https://example.com/about"],
        capture_options=CaptureOptions(timeout_ms=5000),
    )


@pytest.fixture
def temp_config_file(visdiff_config: VisDiffConfig, tmp_path: Path) -> Path:
    """Write the config to a temporary visdiff.config.json."""
    config_file = tmp_path / "visdiff.config.json"
    visdiff_config.save(config_file)
    return config_file


# ============================================================================
# Image Fixtures
# ============================================================================


def make_png(width: int = 10, height: int = 10, color=(255, 255, 255, 255), pixels=None) -> bytes:
    """Encode a solid-colour RGBA PNG, optionally with some pixels overridden.

    ``pixels`` maps ``(x, y)`` to an RGBA tuple.
    """
    img = Image.new("RGBA", (width, height), color)
    for (x, y), value in (pixels or {}).items():
        img.putpixel((x, y), value)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_factory():
    """Fixture that provides the make_png function."""
    return make_png


@pytest.fixture
def white_png() -> bytes:
    return make_png()


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def storage(tmp_path: Path) -> StorageManager:
    """Create an initialized storage manager rooted in a temp directory."""
    manager = StorageManager(tmp_path, StoragePaths())
    manager.initialize()
    return manager


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock(spec=Page)
    page.is_closed = Mock(return_value=False)
    page.set_viewport_size = AsyncMock()
    page.goto = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.evaluate = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.screenshot = AsyncMock(return_value=make_png(20, 10))
    page.close = AsyncMock()
    return page


@pytest.fixture
def mock_browser() -> AsyncMock:
    """Create a mock Playwright browser that reports itself connected."""
    browser = AsyncMock(spec=Browser)
    browser.is_connected = Mock(return_value=True)
    browser.on = Mock()
    browser.close = AsyncMock()
    return browser
