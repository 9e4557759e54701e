"""Pixel-level diffing of baseline and current screenshots.

The matching rule follows pixelmatch: pixels are blended onto white by their
alpha, compared in YIQ space, and counted as different when the perceptual
delta exceeds ``35215 * threshold**2``. When anti-aliasing is ignored, a
differing pixel that looks like an anti-aliased edge in either image (it has
both darker and brighter neighbours, one of which sits in a flat region) is
painted yellow in the diff image but not counted.
"""

from __future__ import annotations

import io
import logging

import numpy as np
from PIL import Image

from visdiff.errors import ComparisonError, describe_error
from visdiff.models.capture import Dimensions
from visdiff.models.comparison import ComparisonPair, ComparisonResult
from visdiff.models.config import DiffOptions

logger = logging.getLogger(__name__)

# Full-page screenshots of long pages exceed Pillow's decompression-bomb limit
Image.MAX_IMAGE_PIXELS = None

MAX_YIQ_DELTA = 35215
AA_COLOR = (255, 255, 0)
GRAY_ALPHA = 0.1

# Neighbour scan order matches pixelmatch (x outer, y inner)
_OFFSETS = np.array([(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)])


class CompareEngine:
    """Compares image pairs and produces pass/fail verdicts with diff overlays."""

    def compare(self, baseline: bytes, current: bytes, options: DiffOptions) -> ComparisonResult:
        """Compare two encoded images. The result's identifier is left empty."""
        try:
            base = _decode(baseline, "baseline")
            curr = _decode(current, "current")
        except ComparisonError as e:
            logger.warning("Comparison failed: %s", e)
            return ComparisonResult(passed=False, difference=1.0, error=describe_error(e))

        if base.shape != curr.shape:
            return self._dimension_mismatch(base, curr, options)

        height, width = base.shape[:2]
        total = width * height
        dimensions = Dimensions(width=width, height=height)

        if options.ignore_colors:
            base = _to_grayscale(base)
            curr = _to_grayscale(curr)

        if total == 0 or np.array_equal(base, curr):
            return ComparisonResult(passed=True, difference=0.0, dimensions=dimensions)

        differs, antialiased = _diff_masks(base, curr, options)
        pixels_different = int(differs.sum())
        difference = pixels_different / total
        passed = difference <= options.threshold

        diff_image = None
        if not passed:
            diff_image = _render_diff(base, differs, antialiased, options.highlight_rgb())

        return ComparisonResult(
            passed=passed,
            difference=difference,
            diff_image=diff_image,
            dimensions=dimensions,
            pixels_different=pixels_different,
        )

    def compare_all(self, pairs: list[ComparisonPair], options: DiffOptions) -> list[ComparisonResult]:
        """Compare every pair; a failure in one pair never affects the others."""
        results = []
        for pair in pairs:
            result = self.compare(pair.baseline, pair.current, options)
            result.identifier = pair.identifier
            logger.debug("Compared %s: %.4f%% different (%s)", pair.identifier,
                         result.difference * 100, "pass" if result.passed else "fail")
            results.append(result)
        return results

    @staticmethod
    def _dimension_mismatch(base: np.ndarray, curr: np.ndarray, options: DiffOptions) -> ComparisonResult:
        bh, bw = base.shape[:2]
        ch, cw = curr.shape[:2]
        logger.info("Dimension mismatch: baseline %dx%d vs current %dx%d", bw, bh, cw, ch)
        canvas = Image.new("RGBA", (max(cw, 1), max(ch, 1)), (*options.highlight_rgb(), 255))
        return ComparisonResult(
            passed=False,
            difference=1.0,
            diff_image=_encode_png(canvas),
            dimensions=Dimensions(width=cw, height=ch),
            pixels_different=cw * ch,
        )


def _decode(data: bytes, label: str) -> np.ndarray:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return np.asarray(img.convert("RGBA"), dtype=np.uint8)
    except Exception as e:
        raise ComparisonError(f"Could not decode {label} image: {e}") from e


def _encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _to_grayscale(rgba: np.ndarray) -> np.ndarray:
    """Replace RGB with luminance, keeping alpha."""
    rgb = rgba[..., :3].astype(np.float64)
    lum = np.round(0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2])
    out = rgba.copy()
    out[..., 0] = out[..., 1] = out[..., 2] = lum.astype(np.uint8)
    return out


def _blend_on_white(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float64)
    alpha = rgba[..., 3:4].astype(np.float64) / 255
    return 255 + (rgb - 255) * alpha


def _rgb2y(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223


def _rgb2i(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.59597799 - rgb[..., 1] * 0.27417610 - rgb[..., 2] * 0.32180189


def _rgb2q(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.21147017 - rgb[..., 1] * 0.52261711 + rgb[..., 2] * 0.31114694


def _diff_masks(base: np.ndarray, curr: np.ndarray, options: DiffOptions) -> tuple[np.ndarray, np.ndarray]:
    """Return (counted differences, anti-aliased differences) as boolean masks."""
    b1 = _blend_on_white(base)
    b2 = _blend_on_white(curr)
    y1, y2 = _rgb2y(b1), _rgb2y(b2)
    dy = y1 - y2
    di = _rgb2i(b1) - _rgb2i(b2)
    dq = _rgb2q(b1) - _rgb2q(b2)
    delta = 0.5053 * dy * dy + 0.299 * di * di + 0.1957 * dq * dq

    exceeds = delta > MAX_YIQ_DELTA * options.threshold * options.threshold
    antialiased = np.zeros_like(exceeds)
    if not options.ignore_antialiasing or not exceeds.any():
        return exceeds, antialiased

    ys, xs = np.nonzero(exceeds)
    y1_pad = np.pad(y1, 1, constant_values=np.nan)
    y2_pad = np.pad(y2, 1, constant_values=np.nan)
    rgba1_pad = np.pad(base.astype(np.int16), ((1, 1), (1, 1), (0, 0)), constant_values=-1)
    rgba2_pad = np.pad(curr.astype(np.int16), ((1, 1), (1, 1), (0, 0)), constant_values=-1)

    aa = (_antialiased(y1_pad, rgba1_pad, rgba2_pad, ys, xs)
          | _antialiased(y2_pad, rgba2_pad, rgba1_pad, ys, xs))
    antialiased[ys[aa], xs[aa]] = True
    return exceeds & ~antialiased, antialiased


def _on_border(ys: np.ndarray, xs: np.ndarray, shape: tuple[int, int]) -> np.ndarray:
    height, width = shape
    return (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)


def _has_many_siblings(rgba_pad: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """True where at least three neighbours are exactly the same colour."""
    shape = (rgba_pad.shape[0] - 2, rgba_pad.shape[1] - 2)
    center = rgba_pad[ys + 1, xs + 1]
    zeroes = _on_border(ys, xs, shape).astype(np.int32)
    for dx, dy in _OFFSETS:
        neighbour = rgba_pad[ys + 1 + dy, xs + 1 + dx]
        zeroes += np.all(neighbour == center, axis=-1)
    return zeroes > 2


def _antialiased(
    y_pad: np.ndarray, rgba_pad: np.ndarray, other_rgba_pad: np.ndarray,
    ys: np.ndarray, xs: np.ndarray,
) -> np.ndarray:
    shape = (y_pad.shape[0] - 2, y_pad.shape[1] - 2)
    center = y_pad[ys + 1, xs + 1]
    deltas = np.stack(
        [center - y_pad[ys + 1 + dy, xs + 1 + dx] for dx, dy in _OFFSETS], axis=1,
    )
    valid = ~np.isnan(deltas)
    zeroes = _on_border(ys, xs, shape).astype(np.int32) + np.sum(valid & (deltas == 0), axis=1)

    rows = np.arange(len(ys))
    min_idx = np.argmin(np.where(valid, deltas, np.inf), axis=1)
    max_idx = np.argmax(np.where(valid, deltas, -np.inf), axis=1)
    min_delta = deltas[rows, min_idx]
    max_delta = deltas[rows, max_idx]

    # A flat area or a one-sided gradient is not an anti-aliased edge
    candidate = (zeroes <= 2) & (min_delta < 0) & (max_delta > 0)

    min_x, min_y = xs + _OFFSETS[min_idx, 0], ys + _OFFSETS[min_idx, 1]
    max_x, max_y = xs + _OFFSETS[max_idx, 0], ys + _OFFSETS[max_idx, 1]
    darkest_flat = _has_many_siblings(rgba_pad, min_y, min_x) & _has_many_siblings(other_rgba_pad, min_y, min_x)
    brightest_flat = _has_many_siblings(rgba_pad, max_y, max_x) & _has_many_siblings(other_rgba_pad, max_y, max_x)
    return candidate & (darkest_flat | brightest_flat)


def _render_diff(
    base: np.ndarray, differs: np.ndarray, antialiased: np.ndarray, highlight: tuple[int, int, int],
) -> bytes:
    """Faded greyscale of the baseline with differing pixels painted over."""
    rgb = base[..., :3].astype(np.float64)
    alpha = base[..., 3].astype(np.float64) / 255
    gray = 255 + (_rgb2y(rgb) - 255) * GRAY_ALPHA * alpha
    out = np.empty(base.shape, dtype=np.uint8)
    out[..., :3] = np.clip(gray, 0, 255).astype(np.uint8)[..., None]
    out[..., 3] = 255
    out[antialiased] = (*AA_COLOR, 255)
    out[differs] = (*highlight, 255)
    return _encode_png(Image.fromarray(out))
