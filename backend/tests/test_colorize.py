from __future__ import annotations

import base64
import io

import numpy as np
import pytest
from PIL import Image

from app.models.raster import GeoBoundingBox, PixelBuffer, RasterImage
from app.services.builder.colorize import composite_rgb, render_palette
from app.services.palettes import build_palette

BOUNDS = GeoBoundingBox(north=37.5, south=37.4, east=-122.0, west=-122.1)


def _raster(bands) -> RasterImage:
    arr = np.asarray(bands)
    if arr.ndim == 2:
        arr = arr[np.newaxis, ...]
    return RasterImage(width=arr.shape[2], height=arr.shape[1], rasters=arr, bounds=BOUNDS)


def test_composite_without_mask_is_opaque_and_keeps_channels() -> None:
    rgb = _raster(
        np.array(
            [
                [[10, 20], [30, 40]],
                [[50, 60], [70, 80]],
                [[90, 100], [110, 120]],
            ],
            dtype=np.uint8,
        )
    )

    out = composite_rgb(rgb)

    assert (out.width, out.height) == (2, 2)
    assert np.all(out.pixels[..., 3] == 255)
    np.testing.assert_array_equal(out.pixels[..., 0], [[10, 20], [30, 40]])
    np.testing.assert_array_equal(out.pixels[..., 1], [[50, 60], [70, 80]])
    np.testing.assert_array_equal(out.pixels[..., 2], [[90, 100], [110, 120]])


def test_mask_sets_output_grid_and_alpha() -> None:
    # 4x4 color grid under a 2x2 mask: every other row/column is sampled.
    color = np.arange(16, dtype=np.uint8).reshape(4, 4)
    rgb = _raster(np.stack([color, color + 100, color + 200]))
    mask = _raster(np.array([[1, 0], [0, 1]], dtype=np.uint8))

    out = composite_rgb(rgb, mask)

    assert (out.width, out.height) == (2, 2)
    np.testing.assert_array_equal(out.pixels[..., 0], [[0, 2], [8, 10]])
    np.testing.assert_array_equal(out.pixels[..., 3], [[255, 0], [0, 255]])


def test_finer_mask_repeats_coarse_color_samples() -> None:
    color = np.array([[1, 2], [3, 4]], dtype=np.uint8)
    rgb = _raster(np.stack([color, color, color]))
    mask = _raster(np.ones((4, 4), dtype=np.uint8))

    out = composite_rgb(rgb, mask)

    np.testing.assert_array_equal(
        out.pixels[..., 0],
        [[1, 1, 2, 2], [1, 1, 2, 2], [3, 3, 4, 4], [3, 3, 4, 4]],
    )


def test_non_square_scale_factors_sample_independently() -> None:
    color = np.arange(6, dtype=np.uint8).reshape(2, 3)
    rgb = _raster(np.stack([color, color, color]))
    mask = _raster(np.ones((1, 3), dtype=np.uint8))

    out = composite_rgb(rgb, mask)

    assert (out.width, out.height) == (3, 1)
    np.testing.assert_array_equal(out.pixels[..., 0], [[0, 1, 2]])


def test_composite_requires_three_bands() -> None:
    with pytest.raises(ValueError, match="3 bands"):
        composite_rgb(_raster(np.zeros((2, 2, 2), dtype=np.uint8)))


def test_render_palette_maps_range_onto_palette_ends() -> None:
    data = _raster(np.array([[0.0, 1800.0], [-5.0, 9000.0]], dtype=np.float32))
    palette = build_palette(["000000", "ffffff"])

    out = render_palette(data, palette, 0.0, 1800.0)

    np.testing.assert_array_equal(out.pixels[..., 0], [[0, 255], [0, 255]])
    assert np.all(out.pixels[..., 3] == 255)


def test_render_palette_defaults_to_grayscale_unit_range() -> None:
    data = _raster(np.array([[0.0, 0.5], [1.0, 0.25]], dtype=np.float64))

    out = render_palette(data)

    np.testing.assert_array_equal(out.pixels[..., 1], [[0, 128], [255, 64]])


def test_render_palette_selects_band_and_applies_mask() -> None:
    bands = np.stack(
        [
            np.zeros((2, 2), dtype=np.float32),
            np.ones((2, 2), dtype=np.float32),
        ]
    )
    data = _raster(bands)
    mask = _raster(np.array([[0, 1], [1, 0]], dtype=np.uint8))

    out = render_palette(data, ["000000", "ff0000"], 0.0, 1.0, mask=mask, band_index=1)

    assert np.all(out.pixels[..., 0] == 255)
    np.testing.assert_array_equal(out.pixels[..., 3], [[0, 255], [255, 0]])


def test_render_palette_rejects_missing_band() -> None:
    with pytest.raises(IndexError):
        render_palette(_raster(np.zeros((2, 2))), band_index=3)


def test_constant_raster_renders_palette_midpoint() -> None:
    data = _raster(np.full((2, 2), 42.0))
    palette = build_palette(["000000", "ffffff"])

    out = render_palette(data, palette, 42.0, 42.0)

    assert np.all(out.pixels[..., 0] == palette[128][0])


def test_nan_range_bound_renders_palette_midpoint() -> None:
    data = _raster(np.array([[0.0, 5.0], [9.0, 2.0]]))
    palette = build_palette(["000000", "ffffff"])

    out = render_palette(data, palette, float("nan"), 10.0)

    assert np.all(out.pixels[..., 0] == palette[128][0])


def test_pixel_buffer_png_round_trips_through_pillow() -> None:
    pixels = np.zeros((3, 5, 4), dtype=np.uint8)
    pixels[..., 0] = 200
    pixels[..., 3] = 255
    buffer = PixelBuffer(pixels)

    image = Image.open(io.BytesIO(buffer.to_png()))
    assert image.size == (5, 3)
    assert image.mode == "RGBA"

    url = buffer.to_data_url()
    assert url.startswith("data:image/png;base64,")
    assert base64.b64decode(url.split(",", 1)[1]) == buffer.to_png()
