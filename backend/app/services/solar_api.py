"""Solar API discovery: location → building insights → data-layer URLs."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

import httpx
from pyproj import Geod

from app.config.solar import (
    SOLAR_API_BASE_URL,
    SOLAR_DEFAULT_RADIUS_METERS,
    SOLAR_PIXEL_SIZE_METERS,
    SOLAR_REQUIRED_QUALITY,
)
from app.models.raster import DataLayerUrls
from app.services.builder.fetch import FetchError, error_payload

logger = logging.getLogger(__name__)

_GEOD = Geod(ellps="WGS84")


async def _get_json(
    client: httpx.AsyncClient,
    endpoint: str,
    params: dict[str, Any],
) -> dict[str, Any]:
    url = f"{SOLAR_API_BASE_URL}/{endpoint}"
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as exc:
        raise FetchError(f"Request failed for {url}: {exc}", url=url) from exc
    if response.status_code != 200:
        payload = error_payload(response)
        logger.warning("Solar API %s failed (status=%d): %s", endpoint, response.status_code, payload)
        raise FetchError(
            f"Solar API {endpoint} failed with status {response.status_code}: {payload}",
            url=url,
            status_code=response.status_code,
            payload=payload,
        )
    return response.json()


async def find_closest_building(
    latitude: float,
    longitude: float,
    api_key: str,
    *,
    client: httpx.AsyncClient,
) -> dict[str, Any]:
    return await _get_json(
        client,
        "buildingInsights:findClosest",
        {
            "location.latitude": latitude,
            "location.longitude": longitude,
            "requiredQuality": SOLAR_REQUIRED_QUALITY,
            "key": api_key,
        },
    )


async def get_data_layers(
    latitude: float,
    longitude: float,
    radius_meters: float,
    api_key: str,
    *,
    client: httpx.AsyncClient,
) -> dict[str, Any]:
    return await _get_json(
        client,
        "dataLayers:get",
        {
            "location.latitude": latitude,
            "location.longitude": longitude,
            "radiusMeters": radius_meters,
            "view": "FULL_LAYERS",
            "requiredQuality": SOLAR_REQUIRED_QUALITY,
            "exactQualityRequired": "true",
            "pixelSizeMeters": SOLAR_PIXEL_SIZE_METERS,
            "key": api_key,
        },
    )


def building_radius_meters(insights: Mapping[str, Any]) -> float:
    """Half the geodesic diagonal of the building bounding box, rounded up.

    Falls back to ``SOLAR_DEFAULT_RADIUS_METERS`` when the box is absent.
    """
    box = insights.get("boundingBox") or {}
    ne = box.get("ne")
    sw = box.get("sw")
    if not ne or not sw:
        return SOLAR_DEFAULT_RADIUS_METERS
    _, _, diameter = _GEOD.inv(
        float(sw["longitude"]), float(sw["latitude"]),
        float(ne["longitude"]), float(ne["latitude"]),
    )
    return float(math.ceil(diameter / 2.0))


async def fetch_layer_sources(
    latitude: float,
    longitude: float,
    api_key: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> DataLayerUrls:
    """Resolve the data-layer URL set for the building nearest a location.

    The request radius is the larger of the building radius and
    ``SOLAR_DEFAULT_RADIUS_METERS``.
    """
    if client is None:
        async with httpx.AsyncClient(follow_redirects=True) as owned_client:
            return await fetch_layer_sources(latitude, longitude, api_key, client=owned_client)

    insights = await find_closest_building(latitude, longitude, api_key, client=client)
    center = insights.get("center") or {"latitude": latitude, "longitude": longitude}
    radius = max(building_radius_meters(insights), SOLAR_DEFAULT_RADIUS_METERS)
    logger.info(
        "Requesting data layers at (%.6f, %.6f) radius=%.0fm",
        float(center["latitude"]), float(center["longitude"]), radius,
    )
    response = await get_data_layers(
        float(center["latitude"]),
        float(center["longitude"]),
        radius,
        api_key,
        client=client,
    )
    return DataLayerUrls.from_response(response)
