"""Storage manager: baselines, diff images, JSON reports, and baseline backups."""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from visdiff.errors import StorageError
from visdiff.models.comparison import ComparisonResult, Report, ReportSummary
from visdiff.models.config import StoragePaths

logger = logging.getLogger(__name__)

RUN_DIR_FORMAT = "%Y-%m-%d-%H-%M-%S"
REPORT_FILE = "report.json"


def run_dir_name(timestamp: datetime) -> str:
    """Zero-padded local timestamp, so name order is chronological order."""
    return timestamp.strftime(RUN_DIR_FORMAT)


def _free_timestamp(parent: Path) -> datetime:
    """Current time, moved forward a second at a time until no directory under
    *parent* has its name."""
    timestamp = datetime.now().replace(microsecond=0)
    while (parent / run_dir_name(timestamp)).exists():
        timestamp += timedelta(seconds=1)
    return timestamp


class StorageManager:
    """Persists visdiff artifacts under a project root.

    Layout::

        {baseline_dir}/{identifier}.png
        {diff_dir}/{YYYY-MM-DD-HH-mm-ss}/diff-{identifier}.png
        {diff_dir}/{YYYY-MM-DD-HH-mm-ss}/report.json
        {backup_dir}/{YYYY-MM-DD-HH-mm-ss}/{identifier}.png

    Baselines change only through ``save_baseline`` (capture) and
    ``approve_changes``, which snapshots every baseline first. Diffs, reports
    and backups are never modified or pruned once written.
    """

    def __init__(
        self,
        root_dir: str | Path | None = None,
        paths: StoragePaths | dict | None = None,
        image_format: str = "png",
    ):
        self.root_dir = Path(root_dir) if root_dir is not None else Path.cwd()
        if isinstance(paths, dict):
            paths = StoragePaths(**paths)
        self.paths = paths or StoragePaths()
        self.extension = "jpg" if image_format == "jpeg" else "png"

    @property
    def baseline_dir(self) -> Path:
        return self.root_dir / self.paths.baseline_dir

    @property
    def diff_dir(self) -> Path:
        return self.root_dir / self.paths.diff_dir

    @property
    def backup_dir(self) -> Path:
        return self.root_dir / self.paths.backup_dir

    @property
    def config_dir(self) -> Path:
        return self.root_dir / self.paths.config_dir

    def _baseline_path(self, identifier: str) -> Path:
        return self.baseline_dir / f"{identifier}.{self.extension}"

    def _run_dir(self, timestamp: datetime) -> Path:
        return self.diff_dir / run_dir_name(timestamp)

    def initialize(self) -> None:
        """Create the storage directories if they do not exist."""
        for directory in (self.baseline_dir, self.diff_dir, self.backup_dir, self.config_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create {directory}: {e}") from e
        logger.debug("Storage initialized under %s", self.root_dir)

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def load_baseline(self, identifier: str) -> Optional[bytes]:
        """Return the stored baseline, or None if there is none."""
        path = self._baseline_path(identifier)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read baseline {path}: {e}") from e

    def save_baseline(self, identifier: str, image: bytes) -> Path:
        """Write (or overwrite) the baseline for *identifier*. Makes no backup."""
        path = self._baseline_path(identifier)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image)
        except OSError as e:
            raise StorageError(f"Failed to write baseline {path}: {e}") from e
        logger.debug("Saved baseline %s (%d bytes)", identifier, len(image))
        return path

    def list_baselines(self) -> list[str]:
        """Identifiers that currently have a stored baseline, sorted."""
        if not self.baseline_dir.is_dir():
            return []
        suffix = f".{self.extension}"
        return sorted(
            p.name[: -len(suffix)]
            for p in self.baseline_dir.iterdir()
            if p.is_file() and p.name.endswith(suffix)
        )

    # ------------------------------------------------------------------
    # Diffs and reports
    # ------------------------------------------------------------------

    def new_run_timestamp(self) -> datetime:
        """Create a new, empty run directory and return the timestamp naming it."""
        while True:
            timestamp = _free_timestamp(self.diff_dir)
            try:
                self._run_dir(timestamp).mkdir(parents=True)
            except FileExistsError:
                continue
            except OSError as e:
                raise StorageError(f"Failed to create run directory under {self.diff_dir}: {e}") from e
            return timestamp

    def save_diff(self, result: ComparisonResult, timestamp: datetime) -> Optional[Path]:
        """Write the diff image of a failed comparison into the run directory."""
        if not result.diff_image:
            return None
        path = self._run_dir(timestamp) / f"diff-{result.identifier}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(result.diff_image)
        except OSError as e:
            raise StorageError(f"Failed to write diff image {path}: {e}") from e
        logger.debug("Saved diff image %s", path)
        return path

    def save_report(self, results: list[ComparisonResult], timestamp: datetime) -> Path:
        """Write ``report.json`` (results without image bytes, plus summary)."""
        report = Report(
            timestamp=timestamp,
            results=results,
            summary=ReportSummary.from_results(results),
        )
        data = report.model_dump(mode="json", exclude={"results": {"__all__": {"diff_image"}}})

        path = self._run_dir(timestamp) / REPORT_FILE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise StorageError(f"Failed to write report {path}: {e}") from e
        logger.info("Saved report to %s (%d passed, %d failed, %d new)", path,
                    report.summary.passed, report.summary.failed, report.summary.new)
        return path

    def get_latest_report(self) -> Optional[Report]:
        """Load the report from the most recent run directory, if any."""
        if not self.diff_dir.is_dir():
            return None
        try:
            run_dirs = sorted(
                (p for p in self.diff_dir.iterdir() if p.is_dir() and (p / REPORT_FILE).is_file()),
                key=lambda p: p.name,
                reverse=True,
            )
        except OSError as e:
            raise StorageError(f"Failed to list {self.diff_dir}: {e}") from e
        if not run_dirs:
            return None

        path = run_dirs[0] / REPORT_FILE
        try:
            with open(path) as f:
                data = json.load(f)
            return Report.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StorageError(f"Failed to load report {path}: {e}") from e

    # ------------------------------------------------------------------
    # Backups and approval
    # ------------------------------------------------------------------

    def backup_baselines(self) -> Path:
        """Copy every current baseline into a new timestamped backup directory.

        The directory is created even when there is nothing to copy.
        """
        backup = self.backup_dir / run_dir_name(_free_timestamp(self.backup_dir))

        try:
            backup.mkdir(parents=True)
            copied = 0
            if self.baseline_dir.is_dir():
                for src in self.baseline_dir.iterdir():
                    if src.is_file():
                        shutil.copy2(src, backup / src.name)
                        copied += 1
        except OSError as e:
            raise StorageError(f"Failed to back up baselines to {backup}: {e}") from e

        logger.info("Backed up %d baseline(s) to %s", copied, backup)
        return backup

    def approve_changes(
        self,
        current_screenshots: dict[str, bytes],
        identifiers: Optional[list[str]] = None,
    ) -> list[str]:
        """Replace baselines with current screenshots, after a full backup.

        Approves *identifiers* (default: every screenshot) in the given order
        and returns those actually approved. Identifiers without a screenshot
        are skipped.
        """
        self.backup_baselines()

        to_approve = list(current_screenshots) if identifiers is None else identifiers
        approved = []
        for identifier in to_approve:
            screenshot = current_screenshots.get(identifier)
            if screenshot is None:
                logger.debug("No current screenshot for %s, skipping", identifier)
                continue
            self.save_baseline(identifier, screenshot)
            approved.append(identifier)

        logger.info("Approved %d of %d requested baseline(s)", len(approved), len(to_approve))
        return approved
