"""Layer assembly: data-layer URLs → renderable layer descriptor.

Each layer id has exactly one builder in ``LAYER_BUILDERS``. A builder
fetches the rasters it needs (mask plus data, concurrently), derives the
value range and legend, and returns a ``LayerDescriptor`` whose ``render``
is a pure function over the fetched rasters.

Usage
-----
    from app.services.builder.layers import assemble_layer

    layer = await assemble_layer("annualFlux", urls, api_key)
    images = layer.render(show_mask_only=True)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import numpy as np

from app.config.solar import LAYER_PRESENTATION_DEFAULTS
from app.models.raster import DataLayerUrls, GeoBoundingBox, PixelBuffer, RasterImage
from app.services.builder.colorize import composite_rgb, render_palette
from app.services.builder.fetch import acquire_raster
from app.services.palettes import (
    BINARY_PALETTE,
    IRON_PALETTE,
    RAINBOW_PALETTE,
    SUNLIGHT_PALETTE,
    build_palette,
    palette_to_hex,
)

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12
HOURS_PER_DAY = 24
MAX_DAY_OF_MONTH = 31

ANNUAL_FLUX_RANGE = (0.0, 1800.0)
MONTHLY_FLUX_RANGE = (0.0, 200.0)


class LayerId(str, Enum):
    MASK = "mask"
    DSM = "dsm"
    RGB = "rgb"
    ANNUAL_FLUX = "annualFlux"
    MONTHLY_FLUX = "monthlyFlux"
    HOURLY_SHADE = "hourlyShade"


VALID_LAYER_IDS = tuple(layer.value for layer in LayerId)


class InvalidLayerError(ValueError):
    """Raised for an empty or unknown layer id."""


def parse_layer_id(value: str | LayerId | None) -> LayerId:
    if isinstance(value, LayerId):
        return value
    if not value:
        raise InvalidLayerError(
            f"layerId is undefined or empty. Available types are: {', '.join(VALID_LAYER_IDS)}"
        )
    try:
        return LayerId(str(value).strip())
    except ValueError:
        raise InvalidLayerError(
            f"Invalid layerId: {value}. Available types are: {', '.join(VALID_LAYER_IDS)}"
        ) from None


@dataclass(frozen=True)
class Legend:
    colors: np.ndarray
    min: str
    max: str

    def to_meta(self) -> dict[str, Any]:
        return {
            "colors": palette_to_hex(self.colors),
            "min": self.min,
            "max": self.max,
        }


@dataclass(frozen=True)
class RenderOptions:
    show_mask_only: bool = False
    month: int = 0
    day: int = 14
    animate: bool = False


def default_render_options(layer_id: str | LayerId) -> RenderOptions:
    """Presentation defaults used when a layer is first displayed."""
    layer = parse_layer_id(layer_id)
    return RenderOptions(**LAYER_PRESENTATION_DEFAULTS[layer.value])


RenderFn = Callable[[bool, int, int], list[PixelBuffer]]


@dataclass(frozen=True)
class LayerDescriptor:
    id: LayerId
    bounds: GeoBoundingBox
    legend: Optional[Legend]
    renderer: RenderFn

    def render(self, show_mask_only: bool = False, month: int = 0, day: int = 1) -> list[PixelBuffer]:
        return self.renderer(bool(show_mask_only), int(month), int(day))

    def overlays(self, show_mask_only: bool = False, month: int = 0, day: int = 1) -> list[dict[str, Any]]:
        """Rendered images as ``{"image": data-url, "bounds": {...}}`` dicts."""
        bounds = self.bounds.to_dict()
        return [
            {"image": image.to_data_url(), "bounds": dict(bounds)}
            for image in self.render(show_mask_only, month, day)
        ]

    def to_meta(self) -> dict[str, Any]:
        return {
            "id": self.id.value,
            "bounds": self.bounds.to_dict(),
            "legend": self.legend.to_meta() if self.legend is not None else None,
        }


def _require_url(url: str | None, layer: LayerId, field_name: str) -> str:
    if not url:
        raise ValueError(f"Layer {layer.value!r} requires {field_name}, which the data layers response lacks")
    return url


def _check_day(day: int) -> None:
    if not 1 <= day <= MAX_DAY_OF_MONTH:
        raise ValueError(f"day must be in [1, {MAX_DAY_OF_MONTH}], got {day}")


def _check_month_day(month: int, day: int, month_count: int) -> None:
    if not 0 <= month < month_count:
        raise ValueError(f"month index must be in [0, {month_count - 1}], got {month}")
    _check_day(day)


def extract_day_bit(raster: RasterImage, day: int) -> RasterImage:
    """Binary raster holding bit ``day - 1`` of every sample of every band.

    Hourly shade bands pack one sun/shade flag per day of the month into an
    integer. Float-typed bands are rounded back to integers first.
    """
    _check_day(day)
    values = raster.rasters
    if not np.issubdtype(values.dtype, np.integer):
        values = np.rint(np.nan_to_num(values, nan=0.0))
    packed = values.astype(np.int64)
    bits = (packed >> (day - 1)) & 1
    return raster.with_rasters(bits.astype(np.uint8))


async def _fetch_all(urls: list[str], api_key: str | None, client: httpx.AsyncClient) -> list[RasterImage]:
    # Every fetch runs to completion; the first failure (in URL order) is re-raised.
    results = await asyncio.gather(
        *(acquire_raster(url, api_key, client=client) for url in urls),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


Builder = Callable[[LayerId, DataLayerUrls, Optional[str], httpx.AsyncClient], Awaitable[LayerDescriptor]]


async def _build_mask(layer_id, urls, api_key, client) -> LayerDescriptor:
    (mask,) = await _fetch_all([urls.mask_url], api_key, client)
    palette = build_palette(BINARY_PALETTE)

    def render(show_mask_only: bool, month: int, day: int) -> list[PixelBuffer]:
        return [
            render_palette(mask, palette, 0.0, 1.0, mask=mask if show_mask_only else None),
        ]

    return LayerDescriptor(
        id=layer_id,
        bounds=mask.bounds,
        legend=Legend(colors=palette, min="No roof", max="Roof"),
        renderer=render,
    )


async def _build_dsm(layer_id, urls, api_key, client) -> LayerDescriptor:
    mask, data = await _fetch_all(
        [urls.mask_url, _require_url(urls.dsm_url, layer_id, "dsmUrl")], api_key, client
    )
    elevation = data.rasters[0]
    finite = np.isfinite(elevation)
    if not finite.any():
        raise ValueError("DSM raster has no finite elevation samples")
    min_value = float(np.min(elevation[finite]))
    max_value = float(np.max(elevation[finite]))
    palette = build_palette(RAINBOW_PALETTE)

    def render(show_mask_only: bool, month: int, day: int) -> list[PixelBuffer]:
        return [
            render_palette(data, palette, min_value, max_value, mask=mask if show_mask_only else None),
        ]

    return LayerDescriptor(
        id=layer_id,
        bounds=mask.bounds,
        legend=Legend(colors=palette, min=f"{min_value:.1f} m", max=f"{max_value:.1f} m"),
        renderer=render,
    )


async def _build_rgb(layer_id, urls, api_key, client) -> LayerDescriptor:
    mask, data = await _fetch_all(
        [urls.mask_url, _require_url(urls.rgb_url, layer_id, "rgbUrl")], api_key, client
    )

    def render(show_mask_only: bool, month: int, day: int) -> list[PixelBuffer]:
        return [composite_rgb(data, mask if show_mask_only else None)]

    return LayerDescriptor(id=layer_id, bounds=mask.bounds, legend=None, renderer=render)


async def _build_annual_flux(layer_id, urls, api_key, client) -> LayerDescriptor:
    mask, data = await _fetch_all(
        [urls.mask_url, _require_url(urls.annual_flux_url, layer_id, "annualFluxUrl")], api_key, client
    )
    palette = build_palette(IRON_PALETTE)
    min_value, max_value = ANNUAL_FLUX_RANGE

    def render(show_mask_only: bool, month: int, day: int) -> list[PixelBuffer]:
        return [
            render_palette(data, palette, min_value, max_value, mask=mask if show_mask_only else None),
        ]

    return LayerDescriptor(
        id=layer_id,
        bounds=mask.bounds,
        legend=Legend(colors=palette, min="Shady", max="Sunny"),
        renderer=render,
    )


async def _build_monthly_flux(layer_id, urls, api_key, client) -> LayerDescriptor:
    mask, data = await _fetch_all(
        [urls.mask_url, _require_url(urls.monthly_flux_url, layer_id, "monthlyFluxUrl")], api_key, client
    )
    if data.count < MONTHS_PER_YEAR:
        raise ValueError(f"Monthly flux raster must have {MONTHS_PER_YEAR} bands, got {data.count}")
    palette = build_palette(IRON_PALETTE)
    min_value, max_value = MONTHLY_FLUX_RANGE

    def render(show_mask_only: bool, month: int, day: int) -> list[PixelBuffer]:
        alpha_mask = mask if show_mask_only else None
        return [
            render_palette(data, palette, min_value, max_value, mask=alpha_mask, band_index=band)
            for band in range(MONTHS_PER_YEAR)
        ]

    return LayerDescriptor(
        id=layer_id,
        bounds=mask.bounds,
        legend=Legend(colors=palette, min="Shady", max="Sunny"),
        renderer=render,
    )


async def _build_hourly_shade(layer_id, urls, api_key, client) -> LayerDescriptor:
    if not urls.hourly_shade_urls:
        raise ValueError(f"Layer {layer_id.value!r} requires hourlyShadeUrls, which the data layers response lacks")
    mask, *months = await _fetch_all([urls.mask_url, *urls.hourly_shade_urls], api_key, client)
    for index, month_raster in enumerate(months):
        if month_raster.count < HOURS_PER_DAY:
            raise ValueError(
                f"Hourly shade raster {index} must have {HOURS_PER_DAY} bands, got {month_raster.count}"
            )
    palette = build_palette(SUNLIGHT_PALETTE)

    def render(show_mask_only: bool, month: int, day: int) -> list[PixelBuffer]:
        _check_month_day(month, day, len(months))
        sunlit = extract_day_bit(months[month], day)
        alpha_mask = mask if show_mask_only else None
        return [
            render_palette(sunlit, palette, 0.0, 1.0, mask=alpha_mask, band_index=hour)
            for hour in range(HOURS_PER_DAY)
        ]

    return LayerDescriptor(
        id=layer_id,
        bounds=mask.bounds,
        legend=Legend(colors=palette, min="Shade", max="Sun"),
        renderer=render,
    )


LAYER_BUILDERS: dict[LayerId, Builder] = {
    LayerId.MASK: _build_mask,
    LayerId.DSM: _build_dsm,
    LayerId.RGB: _build_rgb,
    LayerId.ANNUAL_FLUX: _build_annual_flux,
    LayerId.MONTHLY_FLUX: _build_monthly_flux,
    LayerId.HOURLY_SHADE: _build_hourly_shade,
}


async def assemble_layer(
    layer_id: str | LayerId,
    urls: DataLayerUrls,
    api_key: str | None,
    *,
    client: httpx.AsyncClient | None = None,
) -> LayerDescriptor:
    """Fetch the rasters for *layer_id* and return its descriptor.

    Raises
    ------
    InvalidLayerError
        Empty or unknown layer id.
    FetchError, DecodeError, ReprojectionError
        Propagated unchanged from any raster acquisition.
    """
    layer = parse_layer_id(layer_id)
    builder = LAYER_BUILDERS[layer]
    logger.info("Assembling layer: %s", layer.value)

    try:
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as owned_client:
                return await builder(layer, urls, api_key, owned_client)
        return await builder(layer, urls, api_key, client)
    except Exception as exc:
        logger.error("Error getting layer: %s: %s", layer.value, exc)
        raise
