"""GeoTIFF acquisition from the Solar API.

Downloads a data-layer GeoTIFF, decodes its bands with rasterio and
reprojects the native bounding box into WGS84 latitude/longitude.

Usage
-----
    from app.services.builder.fetch import acquire_raster

    raster = await acquire_raster(urls.mask_url, api_key)
    raster.bounds.north, raster.rasters.shape
"""

from __future__ import annotations

import logging
import math
import warnings
from typing import Any

import httpx
import numpy as np
import rasterio
import rasterio.crs
import rasterio.errors
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError
from rasterio.coords import BoundingBox
from rasterio.io import MemoryFile

from app.config.solar import SOLAR_API_HOST
from app.models.raster import GeoBoundingBox, RasterImage

logger = logging.getLogger(__name__)

WGS84 = CRS.from_epsg(4326)

_METRE_UNITS = {"metre", "meter", "m"}
_DEGREE_UNITS = {"degree", "deg"}
_DEGREE_IN_RADIANS = math.pi / 180.0


class RasterAcquisitionError(RuntimeError):
    """Base class for raster download/decode/reprojection failures."""


class FetchError(RasterAcquisitionError):
    """Raised when the raster request fails or returns a non-success status.

    ``payload`` holds the provider's error body unmodified (parsed JSON when
    possible, otherwise text).
    """

    def __init__(self, message: str, *, url: str, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.payload = payload


class DecodeError(RasterAcquisitionError):
    """Raised when a payload is not a readable GeoTIFF or has no bands."""


class ReprojectionError(RasterAcquisitionError):
    """Raised when a raster's CRS is missing or cannot be transformed to WGS84."""


def with_credentials(url: str, api_key: str | None) -> str:
    """Attach ``key=<api_key>`` only for requests to the Solar API host."""
    if not api_key:
        return url
    parsed = httpx.URL(url)
    if (parsed.host or "").lower() != SOLAR_API_HOST:
        return url
    return str(parsed.copy_set_param("key", api_key))


def _redact(url: str) -> str:
    parsed = httpx.URL(url)
    if "key" not in parsed.params:
        return url
    return str(parsed.copy_set_param("key", "***"))


def error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def download(url: str, api_key: str | None, client: httpx.AsyncClient) -> bytes:
    request_url = with_credentials(url, api_key)
    logger.info("Downloading data layer: %s", _redact(request_url))
    try:
        response = await client.get(request_url)
    except httpx.HTTPError as exc:
        logger.warning("Data layer request failed: %s: %s", url, exc)
        raise FetchError(f"Request failed for {url}: {exc}", url=url) from exc

    if response.status_code != 200:
        payload = error_payload(response)
        logger.warning(
            "Data layer download failed (status=%d): %s\n%s",
            response.status_code, url, payload,
        )
        raise FetchError(
            f"Download failed with status {response.status_code} for {url}: {payload}",
            url=url,
            status_code=response.status_code,
            payload=payload,
        )
    return response.content


def decode_geotiff(payload: bytes) -> tuple[np.ndarray, rasterio.crs.CRS | None, BoundingBox]:
    """Decode GeoTIFF bytes into ``(bands, crs, native_bounds)``.

    Bands are returned shaped ``(count, height, width)`` in the file's own
    dtype so integer bitmask layers keep full precision.
    """
    if not payload:
        raise DecodeError("Empty raster payload")
    try:
        with MemoryFile(payload) as memfile:
            with memfile.open() as src:
                if src.driver != "GTiff":
                    raise DecodeError(f"Expected a GeoTIFF payload, got driver {src.driver!r}")
                if src.count == 0:
                    raise DecodeError("GeoTIFF contains no bands")
                rasters = src.read()
                crs = src.crs
                bounds = src.bounds
    except rasterio.errors.RasterioError as exc:
        raise DecodeError(f"Unreadable raster payload: {exc}") from exc

    logger.debug(
        "GeoTIFF data: shape=%s, CRS=%s, dtype=%s",
        rasters.shape, crs, rasters.dtype,
    )
    return rasters, crs, bounds


def _unit_normalized_source(crs: CRS) -> tuple[CRS, float]:
    """Return a CRS in metres (projected) or degrees (geographic) plus the
    factor that converts native coordinates into those units."""
    axis = crs.axis_info[0] if crs.axis_info else None
    if axis is None:
        return crs, 1.0
    unit_name = (axis.unit_name or "").lower()
    if crs.is_geographic:
        if unit_name in _DEGREE_UNITS:
            return crs, 1.0
        factor = axis.unit_conversion_factor / _DEGREE_IN_RADIANS
    else:
        if unit_name in _METRE_UNITS:
            return crs, 1.0
        factor = axis.unit_conversion_factor

    # PROJ parameters such as false easting are always metres, so dropping
    # the unit keys yields the same projection expressed in metres/degrees.
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        proj_params = crs.to_dict()
    params = {k: v for k, v in proj_params.items() if k not in ("units", "to_meter", "vunits")}
    if not crs.is_geographic:
        params["units"] = "m"
    return CRS.from_dict(params), float(factor)


def reproject_bounds(crs: rasterio.crs.CRS | CRS | str | None, native_bounds: BoundingBox) -> GeoBoundingBox:
    """Transform lower-left/upper-right native corners into a WGS84 box.

    Corners are sorted first: south-up rasters report ``bottom > top``.
    """
    if crs is None or not crs:
        raise ReprojectionError("Raster has no coordinate reference system")
    left, right = sorted((native_bounds.left, native_bounds.right))
    bottom, top = sorted((native_bounds.bottom, native_bounds.top))
    try:
        source = CRS.from_user_input(crs.to_wkt() if isinstance(crs, rasterio.crs.CRS) else crs)
        source, factor = _unit_normalized_source(source)
        transformer = Transformer.from_crs(source, WGS84, always_xy=True)
        west, south = transformer.transform(left * factor, bottom * factor)
        east, north = transformer.transform(right * factor, top * factor)
    except (CRSError, ProjError) as exc:
        raise ReprojectionError(f"Cannot transform raster CRS to WGS84: {exc}") from exc

    if not all(np.isfinite(v) for v in (west, south, east, north)):
        raise ReprojectionError(f"Reprojected bounds are not finite for CRS {crs}")
    return GeoBoundingBox(north=north, south=south, east=east, west=west)


async def acquire_raster(
    url: str,
    api_key: str | None,
    *,
    client: httpx.AsyncClient | None = None,
) -> RasterImage:
    """Download, decode and georeference one data-layer GeoTIFF.

    Raises
    ------
    FetchError
        Transport failure or non-200 response (payload preserved).
    DecodeError
        Body is not a GeoTIFF or has no bands.
    ReprojectionError
        CRS missing or not transformable.
    """
    if client is None:
        async with httpx.AsyncClient(follow_redirects=True) as owned_client:
            payload = await download(url, api_key, owned_client)
    else:
        payload = await download(url, api_key, client)

    rasters, crs, native_bounds = decode_geotiff(payload)
    bounds = reproject_bounds(crs, native_bounds)
    _, height, width = rasters.shape
    return RasterImage(width=int(width), height=int(height), rasters=rasters, bounds=bounds)
