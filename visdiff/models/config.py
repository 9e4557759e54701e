"""Configuration models for visdiff."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from visdiff.errors import ConfigurationError

CONFIG_FILE_NAME = "visdiff.config.json"
RESOLVED_CONFIG_DIR = ".visdiff"
RESOLVED_CONFIG_FILE = "config.json"

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0, le=7680)
    height: int = Field(gt=0, le=4320)
    name: str = Field(min_length=1, max_length=50)
    device_scale_factor: Optional[float] = Field(default=None, ge=0.1, le=5)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Viewport name must not be blank")
        return v


class CaptureOptions(BaseModel):
    full_page: bool = True
    omit_background: bool = False
    timeout_ms: int = Field(default=30000, gt=0, le=300000)
    wait_for_network_idle: bool = True
    wait_for_selector: Optional[str] = None
    custom_script: Optional[str] = None
    animation_delay_ms: Optional[int] = Field(default=None, ge=0, le=10000)


class DiffOptions(BaseModel):
    threshold: float = Field(default=0.01, ge=0, le=1)
    ignore_antialiasing: bool = True
    ignore_colors: bool = False
    highlight_color: str = "#FF0000"

    @field_validator("highlight_color")
    @classmethod
    def validate_hex_color(cls, v: str) -> str:
        if not _HEX_COLOR.match(v):
            raise ValueError(f"highlight_color must be a #RRGGBB hex color, got '{v}'")
        return v

    def highlight_rgb(self) -> tuple[int, int, int]:
        """Parse ``highlight_color`` into an (r, g, b) tuple."""
        h = self.highlight_color
        return int(h[1:3], 16), int(h[3:5], 16), int(h[5:7], 16)


class StoragePaths(BaseModel):
    """Storage directories, relative to the project root."""
    baseline_dir: str = ".visdiff/baselines"
    diff_dir: str = ".visdiff/diffs"
    backup_dir: str = ".visdiff/backups"
    config_dir: str = ".visdiff"


class StorageConfig(BaseModel):
    baseline_dir: str = Field(default=".visdiff/baselines", min_length=1)
    diff_dir: str = Field(default=".visdiff/diffs", min_length=1)
    backup_dir: str = Field(default=".visdiff/backups", min_length=1)
    format: Literal["png", "jpeg"] = "png"
    compression: Optional[int] = Field(default=None, ge=0, le=100)

    def to_paths(self) -> StoragePaths:
        return StoragePaths(
            baseline_dir=self.baseline_dir,
            diff_dir=self.diff_dir,
            backup_dir=self.backup_dir,
            config_dir=RESOLVED_CONFIG_DIR,
        )


def _default_viewports() -> list[Viewport]:
    return [
        Viewport(width=375, height=667, name="mobile"),
        Viewport(width=768, height=1024, name="tablet"),
        Viewport(width=1920, height=1080, name="desktop"),
    ]


class VisDiffConfig(BaseModel):
    viewports: list[Viewport] = Field(default_factory=_default_viewports, min_length=1)
    paths: list[str] = Field(default_factory=lambda: ["http://localhost:3000"], min_length=1)
    capture_options: CaptureOptions = Field(default_factory=CaptureOptions)
    diff_options: DiffOptions = Field(default_factory=DiffOptions)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def get_viewport(self, name: str) -> Viewport | None:
        for viewport in self.viewports:
            if viewport.name == name:
                return viewport
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "VisDiffConfig":
        """Validate user data, filling anything it leaves out from the defaults."""
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a JSON object")
        merged = {k: v for k, v in data.items() if v is not None}
        # Null values inside a section fall back to that section's defaults
        for section in ("capture_options", "diff_options", "storage"):
            if isinstance(merged.get(section), dict):
                merged[section] = {k: v for k, v in merged[section].items() if v is not None}
        try:
            return cls(**merged)
        except ValidationError as e:
            raise ConfigurationError("Invalid configuration", e.errors()) from e

    @classmethod
    def load(cls, path: str | Path = CONFIG_FILE_NAME) -> "VisDiffConfig":
        """Load config from a JSON file, or return the defaults if it does not exist."""
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}") from e
        return cls.from_dict(data)

    def save(self, path: str | Path = CONFIG_FILE_NAME) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)

    def save_resolved(self, root: str | Path) -> Path:
        """Write the fully resolved config to ``.visdiff/config.json`` under *root*."""
        path = Path(root) / RESOLVED_CONFIG_DIR / RESOLVED_CONFIG_FILE
        self.save(path)
        return path

    @classmethod
    def load_resolved(cls, root: str | Path) -> "VisDiffConfig | None":
        path = Path(root) / RESOLVED_CONFIG_DIR / RESOLVED_CONFIG_FILE
        if not path.exists():
            return None
        return cls.load(path)
