"""Google Places lookup for the business setup form."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

import aiohttp

from funnel.models import DEFAULT_CATEGORY
from funnel.service import UpstreamError, ValidationError


logger = logging.getLogger(__name__)

PLACES_API_BASE = "https://maps.googleapis.com/maps/api/place"
DETAILS_FIELDS = "place_id,name,formatted_address,types,photos,url,geometry"
PHOTO_MAX_WIDTH = 800
TEXT_SEARCH_RADIUS_M = 500
REQUEST_TIMEOUT_SEC = 10
PHOTO_RESOLVE_ATTEMPTS = 3
PHOTO_RESOLVE_BACKOFF_SEC = 1.0

_PLACE_NAME_RE = re.compile(r"/maps/place/([^/]+)", re.IGNORECASE)
_PRECISE_COORDS_RE = re.compile(r"!8m2!3d(-?\d+\.\d+)!4d(-?\d+\.\d+)")
_AT_COORDS_RE = re.compile(r"@(-?\d+\.\d+),(-?\d+\.\d+)")
_PLACE_ID_RE = re.compile(r"place_id:([A-Za-z0-9_-]+)")


@dataclass(frozen=True)
class MapsUrlDetails:
    search_name: str = ""
    latitude: float | None = None
    longitude: float | None = None


def parse_maps_url(url: str) -> MapsUrlDetails:
    """Business name and coordinates embedded in a Google Maps share URL."""
    if not url:
        return MapsUrlDetails()
    decoded = unquote(url)
    search_name = ""
    name_match = _PLACE_NAME_RE.search(decoded)
    if name_match:
        search_name = name_match.group(1).replace("+", " ").replace("-", " ").strip()

    coords = _PRECISE_COORDS_RE.search(decoded) or _AT_COORDS_RE.search(decoded)
    if coords:
        return MapsUrlDetails(search_name, float(coords.group(1)), float(coords.group(2)))
    return MapsUrlDetails(search_name)


def extract_place_id(url: str) -> str | None:
    """Explicit `place_id:` token; hex feature ids (`!1s0x...`) are not place ids."""
    match = _PLACE_ID_RE.search(url or "")
    return match.group(1) if match else None


def format_category(place_type: str) -> str:
    """`meal_takeaway` -> `Meal Takeaway`."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in place_type.split("_") if word)


def _contains_api_key(url: str) -> bool:
    return "?key=" in url or "&key=" in url


class PlacesClient:
    def __init__(
        self,
        api_key: str,
        *,
        timeout_sec: int = REQUEST_TIMEOUT_SEC,
        photo_backoff_sec: float = PHOTO_RESOLVE_BACKOFF_SEC,
        api_base: str = PLACES_API_BASE,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout_sec = timeout_sec
        self.photo_backoff_sec = photo_backoff_sec

    async def lookup(self, maps_url: str | None) -> dict[str, Any]:
        """Business details for a Maps URL (place id lookup, else text search)."""
        url = str(maps_url or "").strip()
        if not url:
            raise ValidationError("Google Maps URL is required")
        if not self.api_key:
            raise UpstreamError("Google Maps API key not configured")

        timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            place_id = extract_place_id(url)
            if not place_id:
                place_id = await self._search_place_id(session, parse_maps_url(url))
            return await self._place_details(session, place_id)

    async def _get_json(self, session: aiohttp.ClientSession, endpoint: str, params: dict[str, Any]) -> dict:
        try:
            async with session.get(f"{self.api_base}/{endpoint}/json", params=params) as resp:
                if resp.status != 200:
                    raise UpstreamError(f"Places API error: {resp.status}")
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise UpstreamError("Places API timed out") from exc
        except aiohttp.ClientError as exc:
            raise UpstreamError(f"Places API request failed: {exc}") from exc

    async def _search_place_id(self, session: aiohttp.ClientSession, parsed: MapsUrlDetails) -> str:
        params: dict[str, Any] = {"query": parsed.search_name or "business", "key": self.api_key}
        if parsed.latitude is not None and parsed.longitude is not None:
            params["location"] = f"{parsed.latitude},{parsed.longitude}"
            params["radius"] = TEXT_SEARCH_RADIUS_M
        data = await self._get_json(session, "textsearch", params)
        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            raise UpstreamError(data.get("error_message") or "Business not found in Google Places")
        return str(results[0]["place_id"])

    async def _place_details(self, session: aiohttp.ClientSession, place_id: str) -> dict[str, Any]:
        data = await self._get_json(
            session,
            "details",
            {"place_id": place_id, "fields": DETAILS_FIELDS, "key": self.api_key},
        )
        place = data.get("result")
        if data.get("status") != "OK" or not place:
            raise UpstreamError(data.get("error_message") or "Business not found in Google Places")

        types = place.get("types") or []
        category = format_category(types[0]) if types else DEFAULT_CATEGORY

        hero_image = None
        photos = place.get("photos") or []
        if photos and photos[0].get("photo_reference"):
            photo_url = (
                f"{self.api_base}/photo?maxwidth={PHOTO_MAX_WIDTH}"
                f"&photoreference={photos[0]['photo_reference']}&key={self.api_key}"
            )
            hero_image = await self.resolve_photo_url(session, photo_url)

        resolved_id = place.get("place_id") or place_id
        return {
            "placeId": resolved_id,
            "name": place.get("name"),
            "category": category,
            "mapsUrl": place.get("url") or f"https://www.google.com/maps/place/?q=place_id:{resolved_id}",
            "heroImage": hero_image,
            "address": place.get("formatted_address") or "",
        }

    async def resolve_photo_url(self, session: aiohttp.ClientSession, photo_url: str) -> str | None:
        """Follow the photo redirect to a key-less CDN URL; None when unresolved.

        URLs that still carry the API key are never handed back to clients.
        """
        for attempt in range(1, PHOTO_RESOLVE_ATTEMPTS + 1):
            try:
                async with session.head(photo_url, allow_redirects=True) as resp:
                    if resp.status == 200:
                        resolved = str(resp.url)
                        if _contains_api_key(resolved):
                            return None
                        return resolved
                    logger.warning(
                        "Photo resolution attempt %s/%s: status %s",
                        attempt,
                        PHOTO_RESOLVE_ATTEMPTS,
                        resp.status,
                    )
            except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
                logger.warning(
                    "Photo resolution attempt %s/%s failed: %s",
                    attempt,
                    PHOTO_RESOLVE_ATTEMPTS,
                    exc,
                )
            if attempt < PHOTO_RESOLVE_ATTEMPTS:
                await asyncio.sleep(self.photo_backoff_sec * attempt)
        logger.error("Failed to resolve photo URL after %s attempts", PHOTO_RESOLVE_ATTEMPTS)
        return None
