from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import numpy as np
import pytest
from rasterio.io import MemoryFile
from rasterio.transform import Affine, from_origin

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# UTM zone 10N patch near Mountain View, 0.5 m pixels.
DEFAULT_CRS = "EPSG:32610"
DEFAULT_TRANSFORM = from_origin(577000.0, 4145000.0, 0.5, 0.5)


def geotiff_bytes(
    bands: np.ndarray,
    *,
    crs: str | None = DEFAULT_CRS,
    transform: Affine = DEFAULT_TRANSFORM,
) -> bytes:
    arr = np.asarray(bands)
    if arr.ndim == 2:
        arr = arr[np.newaxis, ...]
    count, height, width = arr.shape
    with MemoryFile() as memfile:
        with memfile.open(
            driver="GTiff",
            width=width,
            height=height,
            count=count,
            dtype=arr.dtype,
            crs=crs,
            transform=transform,
        ) as dst:
            dst.write(arr)
        return bytes(memfile.getbuffer())


@pytest.fixture
def make_geotiff() -> Callable[..., bytes]:
    return geotiff_bytes


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"
