"""Render-time colorization: raster bands → RGBA pixel buffers.

Two entry points:
  - render_palette(): scalar band → palette lookup → RGB raster → composite
  - composite_rgb():  3-band RGB raster (+ optional mask) → RGBA buffer

The mask decides the output grid. Color data at a different resolution is
sampled nearest-neighbor onto the mask grid; nothing is interpolated.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from app.models.raster import PixelBuffer, RasterImage
from app.services.palettes import GRAYSCALE_PALETTE, build_palette, normalize

logger = logging.getLogger(__name__)


def _resolve_palette(colors: Sequence[str] | np.ndarray | None) -> np.ndarray:
    if colors is None:
        return build_palette(GRAYSCALE_PALETTE)
    if isinstance(colors, np.ndarray):
        if colors.ndim != 2 or colors.shape[1] != 3 or colors.shape[0] == 0:
            raise ValueError(f"palette must be shaped (N, 3), got {colors.shape}")
        return colors.astype(np.uint8, copy=False)
    return build_palette(list(colors))


def render_palette(
    data: RasterImage,
    colors: Sequence[str] | np.ndarray | None = None,
    min_value: float = 0.0,
    max_value: float = 1.0,
    mask: RasterImage | None = None,
    band_index: int = 0,
) -> PixelBuffer:
    """Color one band of *data* through a palette.

    Parameters
    ----------
    data : RasterImage
        Source raster; only ``band_index`` is read.
    colors : list of hex strings or (N, 3) uint8 array, optional
        Anchor colors (expanded to 256 entries) or a prebuilt palette.
        Defaults to a black → white ramp.
    min_value, max_value : float
        Value range mapped onto the first and last palette entries.
    mask : RasterImage, optional
        Binary alpha mask; also fixes the output dimensions.
    band_index : int
        Band of *data* to render.

    Returns
    -------
    PixelBuffer
    """
    if not 0 <= band_index < data.count:
        raise IndexError(f"band_index {band_index} out of range for raster with {data.count} bands")

    palette = _resolve_palette(colors)
    norm = normalize(data.rasters[band_index], min_value, max_value)
    indices = np.rint(norm * (len(palette) - 1)).astype(np.intp)

    # LUT lookup: (H, W) indices → (H, W, 3) → band-first (3, H, W)
    rgb = np.transpose(palette[indices], (2, 0, 1))
    return composite_rgb(data.with_rasters(rgb), mask)


def composite_rgb(rgb: RasterImage, mask: RasterImage | None = None) -> PixelBuffer:
    """Composite the first three bands of *rgb* with an optional alpha mask.

    Output is sized to *mask* when given, else to *rgb*. Each output pixel
    ``(x, y)`` samples ``rgb`` at ``(floor(y * dh), floor(x * dw))`` with
    ``dw = rgb.width / out_width`` and ``dh = rgb.height / out_height``.

    Alpha is 255 without a mask, otherwise ``mask band 0 * 255``. Mask
    samples are expected to be exactly 0 or 1; other values are clipped into
    [0, 255] and give partial alpha.
    """
    if rgb.count < 3:
        raise ValueError(f"RGB composite needs 3 bands, got {rgb.count}")

    out_w = mask.width if mask is not None else rgb.width
    out_h = mask.height if mask is not None else rgb.height

    dw = rgb.width / out_w
    dh = rgb.height / out_h
    rows = np.floor(np.arange(out_h, dtype=np.float64) * dh).astype(np.intp)
    cols = np.floor(np.arange(out_w, dtype=np.float64) * dw).astype(np.intp)

    pixels = np.empty((out_h, out_w, 4), dtype=np.uint8)
    sampled = rgb.rasters[:3][:, rows[:, np.newaxis], cols[np.newaxis, :]]
    pixels[..., :3] = np.moveaxis(np.clip(sampled, 0, 255), 0, -1).astype(np.uint8)

    if mask is None:
        pixels[..., 3] = 255
    else:
        alpha = np.asarray(mask.rasters[0], dtype=np.float64) * 255.0
        pixels[..., 3] = np.clip(np.nan_to_num(alpha, nan=0.0), 0, 255).astype(np.uint8)

    logger.debug(
        "Composited RGB %dx%d onto %dx%d (mask=%s)",
        rgb.width, rgb.height, out_w, out_h, mask is not None,
    )
    return PixelBuffer(pixels)
