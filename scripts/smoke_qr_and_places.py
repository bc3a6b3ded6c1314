#!/usr/bin/env python3
"""
QR rendering + Google Places client smoke-check (local fake Places API).

What it validates:
- QR PNG is 256x256, black on white with a light border
- Maps URL parsing: name, coordinates, explicit place ids
- place details lookup, text search fallback, hero photo redirect resolution
- API errors surface as UpstreamError, photo failures degrade to no image

Run:
  python3 scripts/smoke_qr_and_places.py
"""

from __future__ import annotations

import asyncio
import base64
import sys
from io import BytesIO
from pathlib import Path

from aiohttp import web
from aiohttp.test_utils import TestServer
from PIL import Image


def _setup_import_path() -> None:
    for candidate in (
        Path(__file__).resolve().parents[1] / "src",  # local repo root
        Path.cwd() / "src",
        Path("/app/src"),    # container path
    ):
        if candidate.exists():
            sys.path.insert(0, str(candidate))
            return


_setup_import_path()

from funnel.places import PlacesClient, extract_place_id, format_category, parse_maps_url  # noqa: E402
from funnel.qr import QR_SIZE_PX, generate_qr_data_url, generate_qr_png  # noqa: E402
from funnel.service import UpstreamError, ValidationError  # noqa: E402


API_KEY = "smoke-key"


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


async def _expect(error_type: type[Exception], coro, message: str) -> Exception:
    try:
        await coro
    except error_type as exc:
        return exc
    raise AssertionError(message)


def _check_qr() -> None:
    png = generate_qr_png("https://joes-caf.blooreview.app")
    with Image.open(BytesIO(png)) as image:
        _assert(image.format == "PNG", "QR must be a PNG")
        _assert(image.size == (QR_SIZE_PX, QR_SIZE_PX), f"QR must be 256x256, got {image.size}")
        rgb = image.convert("RGB")
        _assert(rgb.getpixel((0, 0)) == (255, 255, 255), "margin must be white")
        colors = {color for _count, color in rgb.getcolors(maxcolors=16) or []}
        _assert((0, 0, 0) in colors, "modules must be black")

    data_url = generate_qr_data_url("https://joes-caf.blooreview.app")
    prefix = "data:image/png;base64,"
    _assert(data_url.startswith(prefix), "data URL prefix")
    _assert(base64.b64decode(data_url[len(prefix):]) == png, "data URL must embed the same PNG")


def _check_url_parsing() -> None:
    parsed = parse_maps_url(
        "https://www.google.com/maps/place/Joe's+Cafe-Bar/@40.7128,-74.0060,17z/data=!3m1!4b1"
    )
    _assert(parsed.search_name == "Joe's Cafe Bar", f"unexpected name {parsed.search_name!r}")
    _assert((parsed.latitude, parsed.longitude) == (40.7128, -74.006), "@ coordinates")

    precise = parse_maps_url(
        "https://www.google.com/maps/place/Shop/@1.0,2.0,17z/data=!4m6!3m5!8m2!3d40.5!4d-73.25!16s"
    )
    _assert((precise.latitude, precise.longitude) == (40.5, -73.25), "!3d/!4d coordinates take precedence")
    _assert(parse_maps_url("").search_name == "", "empty URL parses to empty details")

    _assert(extract_place_id("https://maps.google.com/?q=place_id:ChIJabc_123-x") == "ChIJabc_123-x", "place id")
    _assert(extract_place_id("https://www.google.com/maps/place/x/data=!1s0x89c2:0x1") is None, "hex ids ignored")
    _assert(format_category("meal_takeaway") == "Meal Takeaway", "category formatting")
    _assert(format_category("CAFE") == "Cafe", "category casing")


def _places_app(calls: list[tuple[str, dict]]) -> web.Application:
    async def details(request: web.Request) -> web.Response:
        params = dict(request.query)
        calls.append(("details", params))
        if params.get("place_id") == "MISSING":
            return web.json_response({"status": "NOT_FOUND", "error_message": "No such place"})
        photos = [] if params.get("place_id") == "NOPHOTO" else [{"photo_reference": "REF1"}]
        if params.get("place_id") == "BADPHOTO":
            photos = [{"photo_reference": "BROKEN"}]
        return web.json_response({
            "status": "OK",
            "result": {
                "place_id": params["place_id"],
                "name": "Joe's Cafe",
                "formatted_address": "1 Main St",
                "types": ["cafe", "food"],
                "photos": photos,
                "url": "https://maps.google.com/?cid=42",
            },
        })

    async def textsearch(request: web.Request) -> web.Response:
        params = dict(request.query)
        calls.append(("textsearch", params))
        return web.json_response({"status": "OK", "results": [{"place_id": "FOUND1"}]})

    async def photo(request: web.Request) -> web.Response:
        if request.query.get("photoreference") == "BROKEN":
            return web.Response(status=500)
        raise web.HTTPFound("/cdn/hero.jpg")

    async def cdn(request: web.Request) -> web.Response:
        return web.Response(body=b"jpeg", content_type="image/jpeg")

    app = web.Application()
    app.router.add_get("/details/json", details)
    app.router.add_get("/textsearch/json", textsearch)
    app.router.add_get("/photo", photo)
    app.router.add_get("/cdn/hero.jpg", cdn)
    return app


async def _check_places() -> None:
    await _expect(ValidationError, PlacesClient(API_KEY).lookup("  "), "maps URL is required")
    await _expect(UpstreamError, PlacesClient("").lookup("https://maps.google.com"), "API key is required")

    calls: list[tuple[str, dict]] = []
    server = TestServer(_places_app(calls))
    await server.start_server()
    try:
        base = f"http://{server.host}:{server.port}"
        client = PlacesClient(API_KEY, api_base=base, photo_backoff_sec=0)

        details = await client.lookup("https://maps.google.com/?q=place_id:PLACE1")
        _assert(details["placeId"] == "PLACE1" and details["name"] == "Joe's Cafe", "details fields")
        _assert(details["category"] == "Cafe" and details["address"] == "1 Main St", "category/address")
        _assert(details["mapsUrl"] == "https://maps.google.com/?cid=42", "maps url")
        _assert(details["heroImage"] == f"{base}/cdn/hero.jpg", f"photo must resolve: {details['heroImage']}")
        _assert(calls[0] == ("details", calls[0][1]) and calls[0][1]["key"] == API_KEY, "key passed to API")
        _assert(not any(kind == "textsearch" for kind, _ in calls), "explicit place id skips text search")

        calls.clear()
        searched = await client.lookup("https://www.google.com/maps/place/Joe's+Cafe/@40.7128,-74.0060,17z")
        _assert(searched["placeId"] == "FOUND1", "text search result must be looked up")
        kind, params = calls[0]
        _assert(kind == "textsearch" and params["query"] == "Joe's Cafe", f"text search query: {params}")
        _assert(params["location"] == "40.7128,-74.006" and params["radius"] == "500", "location bias")

        no_photo = await client.lookup("place_id:NOPHOTO")
        _assert(no_photo["heroImage"] is None, "no photos -> no hero image")
        bad_photo = await client.lookup("place_id:BADPHOTO")
        _assert(bad_photo["heroImage"] is None, "unresolvable photo degrades to None")

        await _expect(UpstreamError, client.lookup("place_id:MISSING"), "NOT_FOUND must raise UpstreamError")
    finally:
        await server.close()

    dead = PlacesClient(API_KEY, api_base="http://127.0.0.1:9", timeout_sec=2)
    await _expect(UpstreamError, dead.lookup("place_id:ANY"), "connection errors must raise UpstreamError")


def main() -> None:
    _check_qr()
    _check_url_parsing()
    asyncio.run(_check_places())
    print("OK: QR + places smoke passed.")


if __name__ == "__main__":
    main()
