"""Tests for configuration models."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from visdiff.errors import ConfigurationError
from visdiff.models.config import (
    CaptureOptions,
    DiffOptions,
    StorageConfig,
    Viewport,
    VisDiffConfig,
)


class TestViewport:
    """Tests for Viewport model."""

    def test_custom_values(self):
        viewport = Viewport(width=375, height=812, name="mobile", device_scale_factor=3)
        assert viewport.width == 375
        assert viewport.height == 812
        assert viewport.device_scale_factor == 3

    def test_scale_factor_defaults_to_none(self):
        assert Viewport(width=100, height=100, name="x").device_scale_factor is None

    @pytest.mark.parametrize("width,height", [(0, 100), (100, 0), (7681, 100), (100, 4321)])
    def test_rejects_out_of_range_dimensions(self, width, height):
        with pytest.raises(ValidationError):
            Viewport(width=width, height=height, name="bad")

    def test_rejects_blank_name(self):
        with pytest.raises(ValidationError, match="must not be blank"):
            Viewport(width=100, height=100, name="   ")

    @pytest.mark.parametrize("scale", [0.05, 5.5])
    def test_rejects_out_of_range_scale(self, scale):
        with pytest.raises(ValidationError):
            Viewport(width=100, height=100, name="x", device_scale_factor=scale)

    def test_is_frozen(self):
        viewport = Viewport(width=100, height=100, name="x")
        with pytest.raises(ValidationError):
            viewport.width = 200


class TestCaptureOptions:
    """Tests for CaptureOptions model."""

    def test_default_values(self):
        options = CaptureOptions()
        assert options.full_page is True
        assert options.omit_background is False
        assert options.timeout_ms == 30000
        assert options.wait_for_network_idle is True
        assert options.wait_for_selector is None
        assert options.custom_script is None
        assert options.animation_delay_ms is None

    def test_timeout_limit(self):
        with pytest.raises(ValidationError):
            CaptureOptions(timeout_ms=300001)

    def test_animation_delay_limit(self):
        with pytest.raises(ValidationError):
            CaptureOptions(animation_delay_ms=10001)


class TestDiffOptions:
    """Tests for DiffOptions model."""

    def test_default_values(self):
        options = DiffOptions()
        assert options.threshold == 0.01
        assert options.ignore_antialiasing is True
        assert options.ignore_colors is False
        assert options.highlight_color == "#FF0000"

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_threshold_range(self, threshold):
        with pytest.raises(ValidationError):
            DiffOptions(threshold=threshold)

    @pytest.mark.parametrize("color", ["red", "#FFF", "#GG0000", "FF0000"])
    def test_rejects_invalid_highlight_color(self, color):
        with pytest.raises(ValidationError, match="hex color"):
            DiffOptions(highlight_color=color)

    def test_highlight_rgb(self):
        assert DiffOptions(highlight_color="#00ff80").highlight_rgb() == (0, 255, 128)


class TestStorageConfig:
    """Tests for StorageConfig model."""

    def test_defaults(self):
        storage = StorageConfig()
        assert storage.baseline_dir == ".visdiff/baselines"
        assert storage.format == "png"
        assert storage.compression is None

    def test_rejects_unknown_format(self):
        with pytest.raises(ValidationError):
            StorageConfig(format="webp")

    def test_compression_range(self):
        with pytest.raises(ValidationError):
            StorageConfig(compression=101)

    def test_to_paths(self):
        paths = StorageConfig(baseline_dir="shots").to_paths()
        assert paths.baseline_dir == "shots"
        assert paths.config_dir == ".visdiff"


class TestVisDiffConfig:
    """Tests for VisDiffConfig model."""

    def test_default_values(self):
        config = VisDiffConfig()
        assert [v.name for v in config.viewports] == ["mobile", "tablet", "desktop"]
        assert (config.viewports[0].width, config.viewports[0].height) == (375, 667)
        assert (config.viewports[2].width, config.viewports[2].height) == (1920, 1080)
        assert config.paths == ["http://localhost:3000"]

    def test_get_viewport(self):
        config = VisDiffConfig()
        assert config.get_viewport("tablet").width == 768
        assert config.get_viewport("watch") is None

    def test_from_dict_fills_partial_sections(self):
        config = VisDiffConfig.from_dict({
            "paths": ["https://example.com"],
            "diff_options": {"threshold": 0.05},
            "capture_options": {"full_page": False, "timeout_ms": None},
        })
        assert config.paths == ["https://example.com"]
        assert config.diff_options.threshold == 0.05
        assert config.diff_options.highlight_color == "#FF0000"
        assert config.capture_options.full_page is False
        assert config.capture_options.timeout_ms == 30000
        assert len(config.viewports) == 3

    def test_from_dict_invalid_raises_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            VisDiffConfig.from_dict({"viewports": [{"width": -1, "height": 10, "name": "x"}]})
        assert exc_info.value.details
        assert exc_info.value.details[0]["loc"][0] == "viewports"

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(ConfigurationError):
            VisDiffConfig.from_dict(["not", "a", "dict"])

    def test_empty_paths_rejected(self):
        with pytest.raises(ConfigurationError):
            VisDiffConfig.from_dict({"paths": []})

    def test_save_and_load(self, tmp_path: Path):
        config = VisDiffConfig(paths=["https://example.com/a"])
        config_file = tmp_path / "visdiff.config.json"
        config.save(config_file)

        loaded = VisDiffConfig.load(config_file)
        assert loaded == config

    def test_load_missing_file_returns_defaults(self, tmp_path: Path):
        assert VisDiffConfig.load(tmp_path / "missing.json") == VisDiffConfig()

    def test_load_malformed_json(self, tmp_path: Path):
        config_file = tmp_path / "visdiff.config.json"
        config_file.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Failed to load"):
            VisDiffConfig.load(config_file)

    def test_load_invalid_values(self, tmp_path: Path):
        config_file = tmp_path / "visdiff.config.json"
        config_file.write_text(json.dumps({"storage": {"format": "gif"}}))
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            VisDiffConfig.load(config_file)

    def test_resolved_config_round_trip(self, tmp_path: Path):
        assert VisDiffConfig.load_resolved(tmp_path) is None

        config = VisDiffConfig(paths=["https://example.com"])
        path = config.save_resolved(tmp_path)
        assert path == tmp_path / ".visdiff" / "config.json"
        assert VisDiffConfig.load_resolved(tmp_path) == config
