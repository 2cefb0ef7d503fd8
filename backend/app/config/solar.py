from __future__ import annotations

import os

SOLAR_API_HOST = os.environ.get("SOLAR_API_HOST", "solar.googleapis.com").strip().lower()
SOLAR_API_BASE_URL = os.environ.get("SOLAR_API_BASE_URL", f"https://{SOLAR_API_HOST}/v1").rstrip("/")
SOLAR_REQUIRED_QUALITY = os.environ.get("SOLAR_REQUIRED_QUALITY", "HIGH").strip().upper()


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


SOLAR_PIXEL_SIZE_METERS = _float_env("SOLAR_PIXEL_SIZE_METERS", 0.5)
SOLAR_DEFAULT_RADIUS_METERS = _float_env("SOLAR_DEFAULT_RADIUS_METERS", 100.0)

# Presentation defaults applied when a layer is first shown.
LAYER_PRESENTATION_DEFAULTS: dict[str, dict] = {
    "mask": {"show_mask_only": False, "month": 0, "day": 14, "animate": False},
    "dsm": {"show_mask_only": False, "month": 0, "day": 14, "animate": False},
    "rgb": {"show_mask_only": False, "month": 0, "day": 14, "animate": False},
    "annualFlux": {"show_mask_only": True, "month": 0, "day": 14, "animate": False},
    "monthlyFlux": {"show_mask_only": True, "month": 0, "day": 14, "animate": True},
    "hourlyShade": {"show_mask_only": True, "month": 3, "day": 14, "animate": True},
}
