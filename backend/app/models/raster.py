from __future__ import annotations

import base64
import io
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

import numpy as np
from PIL import Image


@dataclass(frozen=True)
class GeoBoundingBox:
    north: float
    south: float
    east: float
    west: float

    def to_dict(self) -> dict[str, float]:
        return {
            "north": float(self.north),
            "south": float(self.south),
            "east": float(self.east),
            "west": float(self.west),
        }


@dataclass(frozen=True)
class RasterImage:
    """Decoded raster bands sharing one pixel grid and geographic extent.

    ``rasters`` is shaped ``(bands, height, width)`` and keeps the sample
    dtype of the source file. The flat sample ``row * width + col`` of band
    ``b`` is ``rasters[b, row, col]``.
    """

    width: int
    height: int
    rasters: np.ndarray
    bounds: GeoBoundingBox

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Raster dimensions must be positive, got {self.width}x{self.height}")
        arr = np.asarray(self.rasters).view()
        if arr.ndim == 2:
            arr = arr[np.newaxis, ...]
        if arr.ndim != 3 or arr.shape[1:] != (self.height, self.width):
            raise ValueError(
                f"rasters must be shaped (bands, {self.height}, {self.width}), got {arr.shape}"
            )
        arr.setflags(write=False)
        object.__setattr__(self, "rasters", arr)

    @property
    def count(self) -> int:
        return int(self.rasters.shape[0])

    def band(self, index: int) -> np.ndarray:
        """Flat ``width * height`` view of one band."""
        return self.rasters[index].reshape(-1)

    def with_rasters(self, rasters: np.ndarray) -> RasterImage:
        return RasterImage(width=self.width, height=self.height, rasters=rasters, bounds=self.bounds)


@dataclass(frozen=True)
class PixelBuffer:
    """RGBA uint8 pixels shaped ``(height, width, 4)``."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.pixels, dtype=np.uint8).view()
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(f"pixels must be shaped (H, W, 4), got {arr.shape}")
        arr.setflags(write=False)
        object.__setattr__(self, "pixels", arr)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels, dtype=np.uint8, copy=True))

    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.to_image().save(buf, format="PNG")
        return buf.getvalue()

    def to_data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.to_png()).decode("ascii")


@dataclass(frozen=True)
class DataLayerUrls:
    mask_url: str
    dsm_url: Optional[str] = None
    rgb_url: Optional[str] = None
    annual_flux_url: Optional[str] = None
    monthly_flux_url: Optional[str] = None
    hourly_shade_urls: tuple[str, ...] = field(default_factory=tuple)
    imagery_quality: Optional[str] = None
    imagery_date: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "hourly_shade_urls", tuple(self.hourly_shade_urls))

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> DataLayerUrls:
        """Parse a ``dataLayers:get`` response body."""
        mask_url = payload.get("maskUrl")
        if not mask_url:
            raise ValueError("Data layers response has no maskUrl")
        imagery_date = payload.get("imageryDate")
        date_text = None
        if isinstance(imagery_date, Mapping):
            try:
                date_text = "{:04d}-{:02d}-{:02d}".format(
                    int(imagery_date["year"]),
                    int(imagery_date["month"]),
                    int(imagery_date["day"]),
                )
            except (KeyError, TypeError, ValueError):
                date_text = None
        hourly: Sequence[str] = payload.get("hourlyShadeUrls") or ()
        return cls(
            mask_url=str(mask_url),
            dsm_url=payload.get("dsmUrl"),
            rgb_url=payload.get("rgbUrl"),
            annual_flux_url=payload.get("annualFluxUrl"),
            monthly_flux_url=payload.get("monthlyFluxUrl"),
            hourly_shade_urls=tuple(str(url) for url in hourly),
            imagery_quality=payload.get("imageryQuality"),
            imagery_date=date_text,
        )
