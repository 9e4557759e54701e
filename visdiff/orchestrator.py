"""Pipeline orchestrator wiring the capture, compare, approve, status and watch flows."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from visdiff.browser.manager import BrowserManager, BrowserOptions
from visdiff.capture.engine import CaptureEngine
from visdiff.compare.engine import CompareEngine
from visdiff.errors import ConfigurationError
from visdiff.models.capture import CaptureResult, CaptureSummary
from visdiff.models.comparison import ComparisonPair, ComparisonResult, Report
from visdiff.models.config import DiffOptions, Viewport, VisDiffConfig
from visdiff.storage.manager import StorageManager
from visdiff.url_utils import generate_identifier

logger = logging.getLogger(__name__)

NO_BASELINE = "No baseline found"


@dataclass
class CaptureRun:
    summary: CaptureSummary
    saved: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.summary.failed > 0 else 0


@dataclass
class CompareRun:
    capture: CaptureSummary
    results: list[ComparisonResult]
    threshold: float
    timestamp: datetime
    report_path: Optional[Path] = None
    updated: list[str] = field(default_factory=list)
    fail_on_missing: bool = True

    @property
    def passed(self) -> list[ComparisonResult]:
        return [r for r in self.results if r.passed and not r.error]

    @property
    def failed(self) -> list[ComparisonResult]:
        return [r for r in self.results if not r.passed and not r.error]

    @property
    def missing(self) -> list[ComparisonResult]:
        return [r for r in self.results if r.error == NO_BASELINE]

    @property
    def errored(self) -> list[ComparisonResult]:
        return [r for r in self.results if r.error and r.error != NO_BASELINE]

    @property
    def exit_code(self) -> int:
        if self.failed or self.errored or self.capture.failed:
            return 1
        if self.missing and self.fail_on_missing:
            return 1
        return 0


def identifier_for(result: CaptureResult) -> str:
    return generate_identifier(result.url, result.viewport.name)


class Orchestrator:
    """Coordinates the browser, engines and storage for each CLI command."""

    def __init__(
        self,
        config: VisDiffConfig,
        root_dir: str | Path | None = None,
        browser_options: BrowserOptions | None = None,
    ):
        self.config = config
        self.root_dir = Path(root_dir) if root_dir is not None else Path.cwd()
        self.browser_options = browser_options or BrowserOptions()
        self.storage = StorageManager(
            self.root_dir,
            config.storage.to_paths(),
            image_format=config.storage.format,
        )
        self.compare_engine = CompareEngine()

    def _capture_engine(self, browser: BrowserManager) -> CaptureEngine:
        return CaptureEngine(
            browser,
            image_format=self.config.storage.format,
            jpeg_quality=self.config.storage.compression,
        )

    def _select_viewports(self, viewport_name: str | None) -> list[Viewport]:
        if not viewport_name:
            return list(self.config.viewports)
        viewport = self.config.get_viewport(viewport_name)
        if viewport is None:
            raise ConfigurationError(f"Viewport '{viewport_name}' not found in configuration")
        return [viewport]

    def _resolve_urls(self, urls: list[str] | None) -> list[str]:
        resolved = list(urls) if urls else list(self.config.paths)
        if not resolved:
            raise ConfigurationError("No URLs specified")
        return resolved

    # ------------------------------------------------------------------
    # capture
    # ------------------------------------------------------------------

    def run_capture(
        self,
        urls: list[str] | None = None,
        viewport: str | None = None,
        full_page: bool | None = None,
        timeout_ms: int | None = None,
    ) -> CaptureRun:
        """Capture baselines for every URL/viewport and save the successes."""
        return asyncio.run(self._capture(urls, viewport, full_page, timeout_ms))

    async def _capture(
        self,
        urls: list[str] | None,
        viewport: str | None,
        full_page: bool | None,
        timeout_ms: int | None,
    ) -> CaptureRun:
        urls = self._resolve_urls(urls)
        viewports = self._select_viewports(viewport)
        overrides: dict = {}
        if full_page is not None:
            overrides["full_page"] = full_page
        if timeout_ms is not None:
            overrides["timeout_ms"] = timeout_ms
        options = self.config.capture_options.model_copy(update=overrides)

        self.storage.initialize()
        browser = BrowserManager(self.browser_options)
        try:
            await browser.launch()
            summary = await self._capture_engine(browser).capture_all(urls, viewports, options)
        finally:
            await browser.close()

        run = CaptureRun(summary=summary)
        for result in summary.results:
            if result.success:
                identifier = identifier_for(result)
                self.storage.save_baseline(identifier, result.image)
                run.saved.append(identifier)
        logger.info("Saved %d baseline(s)", len(run.saved))
        return run

    # ------------------------------------------------------------------
    # compare
    # ------------------------------------------------------------------

    def run_compare(
        self,
        urls: list[str] | None = None,
        threshold: float | None = None,
        update_on_pass: bool = False,
        fail_on_missing: bool = True,
    ) -> CompareRun:
        """Capture current screenshots and compare them with the baselines."""
        return asyncio.run(self._compare_once(urls, threshold, update_on_pass, fail_on_missing))

    def _diff_options(self, threshold: float | None) -> DiffOptions:
        if threshold is None:
            return self.config.diff_options
        return DiffOptions(**{**self.config.diff_options.model_dump(), "threshold": threshold})

    async def _compare_once(
        self,
        urls: list[str] | None,
        threshold: float | None,
        update_on_pass: bool,
        fail_on_missing: bool,
    ) -> CompareRun:
        urls = self._resolve_urls(urls)
        diff_options = self._diff_options(threshold)
        self.storage.initialize()
        browser = BrowserManager(self.browser_options)
        try:
            await browser.launch()
            return await self._compare(browser, urls, diff_options, update_on_pass, fail_on_missing)
        finally:
            await browser.close()

    async def _compare(
        self,
        browser: BrowserManager,
        urls: list[str],
        diff_options: DiffOptions,
        update_on_pass: bool = False,
        fail_on_missing: bool = True,
    ) -> CompareRun:
        capture = await self._capture_engine(browser).capture_all(
            urls, self.config.viewports, self.config.capture_options,
        )
        if capture.failed:
            logger.warning("%d capture(s) failed", capture.failed)

        pairs: list[ComparisonPair] = []
        missing: list[ComparisonResult] = []
        current: dict[str, bytes] = {}
        for result in capture.results:
            if not result.success:
                continue
            identifier = identifier_for(result)
            current[identifier] = result.image
            baseline = self.storage.load_baseline(identifier)
            if baseline is None:
                logger.warning("No baseline for %s", identifier)
                missing.append(ComparisonResult(
                    identifier=identifier,
                    passed=False,
                    dimensions=result.metadata.dimensions,
                    error=NO_BASELINE,
                ))
                continue
            pairs.append(ComparisonPair(baseline=baseline, current=result.image, identifier=identifier))

        results = self.compare_engine.compare_all(pairs, diff_options) + missing

        timestamp = self.storage.new_run_timestamp()
        for result in results:
            self.storage.save_diff(result, timestamp)
        report_path = self.storage.save_report(results, timestamp)

        run = CompareRun(
            capture=capture,
            results=results,
            threshold=diff_options.threshold,
            timestamp=timestamp,
            report_path=report_path,
            fail_on_missing=fail_on_missing,
        )

        if update_on_pass and run.passed:
            run.updated = self.storage.approve_changes(
                current, [r.identifier for r in run.passed],
            )

        logger.info("Comparison complete: %d passed, %d failed, %d new",
                    len(run.passed), len(run.failed), len(run.missing))
        return run

    # ------------------------------------------------------------------
    # approve
    # ------------------------------------------------------------------

    def run_approve(self, identifiers: list[str] | None = None) -> list[str]:
        """Recapture the configured pages and promote them to baselines.

        ``identifiers=None`` approves every successful capture.
        """
        return asyncio.run(self._approve(identifiers))

    async def _approve(self, identifiers: list[str] | None) -> list[str]:
        urls = self._resolve_urls(None)
        self.storage.initialize()
        browser = BrowserManager(self.browser_options)
        try:
            await browser.launch()
            summary = await self._capture_engine(browser).capture_all(
                urls, self.config.viewports, self.config.capture_options,
            )
        finally:
            await browser.close()

        current = {identifier_for(r): r.image for r in summary.results if r.success}
        return self.storage.approve_changes(current, identifiers)

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    def get_status(self) -> Report | None:
        """Latest comparison report, or None if nothing has been compared yet."""
        return self.storage.get_latest_report()

    # ------------------------------------------------------------------
    # watch
    # ------------------------------------------------------------------

    async def watch(
        self,
        urls: list[str] | None = None,
        interval_ms: int = 2000,
        on_result: Callable[[CompareRun], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        max_runs: int | None = None,
    ) -> int:
        """Re-run the comparison every *interval_ms* until cancelled.

        A failing run is reported through *on_error* and watching continues.
        Returns the number of runs attempted.
        """
        urls = self._resolve_urls(urls)
        diff_options = self._diff_options(None)
        self.storage.initialize()
        runs = 0
        browser = BrowserManager(self.browser_options)
        try:
            await browser.launch()
            while max_runs is None or runs < max_runs:
                started = time.monotonic()
                runs += 1
                try:
                    run = await self._compare(browser, urls, diff_options)
                except Exception as e:
                    logger.error("Watch comparison failed, continuing: %s", e)
                    if on_error:
                        on_error(e)
                else:
                    if on_result:
                        on_result(run)
                if max_runs is not None and runs >= max_runs:
                    break
                elapsed = time.monotonic() - started
                await asyncio.sleep(max(0.0, interval_ms / 1000 - elapsed))
        finally:
            await browser.close()
        return runs
