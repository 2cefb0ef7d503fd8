#!/usr/bin/env python3
"""Render one Solar API data layer for a location into PNG files.

Usage:
    PYTHONPATH=backend SOLAR_API_KEY=... .venv/bin/python backend/scripts/render_layer.py \
      --lat 37.4449 --lng -122.1391 --layer annualFlux --out ./out

Optional:
    --mask-only          # clip to the roof mask (defaults per layer otherwise)
    --month 3 --day 14   # hourlyShade selection (month is 0-based)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import httpx

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.services.builder.layers import VALID_LAYER_IDS, assemble_layer, default_render_options
from app.services.solar_api import fetch_layer_sources


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render a Solar API data layer to PNG frames")
    parser.add_argument("--lat", type=float, required=True, help="Latitude in degrees")
    parser.add_argument("--lng", type=float, required=True, help="Longitude in degrees")
    parser.add_argument("--layer", default="rgb", choices=VALID_LAYER_IDS, help="Layer id (default: rgb)")
    parser.add_argument("--out", default="./out", help="Output directory (default: ./out)")
    parser.add_argument(
        "--api-key",
        default=os.environ.get("SOLAR_API_KEY", ""),
        help="Solar API key (default: env SOLAR_API_KEY)",
    )
    parser.add_argument("--mask-only", action="store_true", default=None, help="Clip output to the roof mask")
    parser.add_argument("--month", type=int, default=None, help="0-based month index for hourlyShade")
    parser.add_argument("--day", type=int, default=None, help="Day of month (1-31) for hourlyShade")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    defaults = default_render_options(args.layer)
    show_mask_only = defaults.show_mask_only if args.mask_only is None else args.mask_only
    month = defaults.month if args.month is None else args.month
    day = defaults.day if args.day is None else args.day

    async with httpx.AsyncClient(follow_redirects=True, timeout=60.0) as client:
        urls = await fetch_layer_sources(args.lat, args.lng, args.api_key, client=client)
        layer = await assemble_layer(args.layer, urls, args.api_key, client=client)

    images = layer.render(show_mask_only, month, day)
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    for idx, image in enumerate(images):
        path = out_dir / f"{layer.id.value}_{idx:02d}.png"
        path.write_bytes(image.to_png())
        print(f"OK   {path} ({image.width}x{image.height})")

    meta_path = out_dir / f"{layer.id.value}.json"
    meta = layer.to_meta()
    meta["render"] = {"show_mask_only": show_mask_only, "month": month, "day": day, "frames": len(images)}
    meta_path.write_text(json.dumps(meta, indent=2))
    print(f"Done. layer={layer.id.value} frames={len(images)} meta={meta_path}")
    return 0


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.api_key:
        print("ERROR: --api-key or SOLAR_API_KEY is required")
        return 2
    if not -90.0 <= args.lat <= 90.0 or not -180.0 <= args.lng <= 180.0:
        print(f"ERROR: invalid location: {args.lat}, {args.lng}")
        return 2
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
