"""Palette constants and color-ramp helpers for data-layer rendering.

A palette is a (size, 3) uint8 array. Scalar rasters are normalized to
[0, 1], scaled to a palette index, and looked up to produce RGB.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

PALETTE_SIZE = 256

# Anchor colors per layer family, lowest value first.
BINARY_PALETTE = ["212121", "B3E5FC"]
RAINBOW_PALETTE = ["3949AB", "81D4FA", "66BB6A", "FFE082", "E53935"]
IRON_PALETTE = ["00000A", "91009C", "E64616", "FEB400", "FFFFF6"]
SUNLIGHT_PALETTE = ["212121", "FFCA28"]
GRAYSCALE_PALETTE = ["000000", "ffffff"]


def hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    hex_str = hex_color.strip().lstrip("#")
    if len(hex_str) != 6:
        raise ValueError(f"Invalid hex color: {hex_color}")
    return (
        int(hex_str[0:2], 16),
        int(hex_str[2:4], 16),
        int(hex_str[4:6], 16),
    )


def rgb_to_hex(rgb: Sequence[float]) -> str:
    r, g, b = np.clip(np.rint(np.asarray(rgb, dtype=np.float64)[:3]), 0, 255).astype(np.uint8).tolist()
    return f"#{r:02x}{g:02x}{b:02x}"


def lerp(x, y, t):
    return x + t * (y - x)


def clamp(x, lo, hi):
    return np.minimum(np.maximum(x, lo), hi)


def normalize(x, min_value: float = 0.0, max_value: float = 1.0):
    """Map ``x`` into [0, 1] relative to ``[min_value, max_value]``.

    Works on scalars and arrays. A zero-width or non-finite range maps every
    finite value to 0.5; non-finite values map to 0.0.
    """
    values = np.asarray(x, dtype=np.float64)
    finite = np.isfinite(values)
    span = float(max_value) - float(min_value)
    if span == 0.0 or not np.isfinite(span):
        result = np.where(finite, 0.5, 0.0)
    else:
        with np.errstate(invalid="ignore"):
            scaled = (np.where(finite, values, min_value) - float(min_value)) / span
        result = np.where(finite, clamp(scaled, 0.0, 1.0), 0.0)
    if result.ndim == 0:
        return float(result)
    return result


def build_palette(anchors: Sequence[str], size: int = PALETTE_SIZE) -> np.ndarray:
    """Interpolate hex anchor colors into a ``(size, 3)`` uint8 ramp.

    Anchors are spaced evenly over ``[0, size - 1]``; each entry blends the
    two neighbouring anchors linearly.
    """
    if not anchors:
        raise ValueError("anchors must contain at least one color")
    if size < 1:
        raise ValueError(f"palette size must be positive, got {size}")

    stops = np.array([hex_to_rgb(color) for color in anchors], dtype=np.float64)
    if len(stops) == 1 or size == 1:
        return np.repeat(stops[:1], size, axis=0).astype(np.uint8)

    positions = np.arange(size, dtype=np.float64) * (len(stops) - 1) / (size - 1)
    lower = np.floor(positions).astype(np.intp)
    upper = np.ceil(positions).astype(np.intp)
    weight = (positions - lower)[:, np.newaxis]
    ramp = lerp(stops[lower], stops[upper], weight)
    return np.clip(np.rint(ramp), 0, 255).astype(np.uint8)


def palette_to_hex(palette: np.ndarray) -> list[str]:
    return [rgb_to_hex(entry) for entry in np.asarray(palette)]
