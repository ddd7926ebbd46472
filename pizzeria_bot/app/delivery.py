"""Delivery input helpers: coordinates from text and Google Maps links, and delivery quotes."""
import re
from typing import Optional
from urllib.parse import unquote, urljoin, urlsplit

import requests

from ..schemas.session_models import DeliveryQuote, LatLng, Session
from ..utils.geo import delivery_cost, distance_km, round_delivery_cost  # noqa: F401
from ..utils.logger import get_logger
from .config import Config

logger = get_logger("delivery")

COORDS_REGEX = re.compile(r"(-?\d{1,3}\.\d+)\s*,\s*(-?\d{1,3}\.\d+)")
URL_REGEX = re.compile(r"https?://\S+", re.IGNORECASE)
MAPS_SHORT_HOSTS = ("maps.app.goo.gl",)
GOOGLE_HOST = re.compile(r"(?:www\.)?google\.(?:com?\.)?[a-z]{2,3}")
MAPS_GOOGLE_HOST = re.compile(r"maps\.google\.(?:com?\.)?[a-z]{2,3}")

MAPS_COORD_PATTERNS = [
    re.compile(r"!3d(-?\d+(?:\.\d+)?)!4d(-?\d+(?:\.\d+)?)"),
    re.compile(r"@(-?\d+(?:\.\d+)?),(-?\d+(?:\.\d+)?)"),
    re.compile(r"[?&](?:q|query|ll)=(-?\d+(?:\.\d+)?),(-?\d+(?:\.\d+)?)"),
]

MAX_REDIRECT_HOPS = 5
REQUEST_TIMEOUT = 8
REQUEST_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; PizzeriaBot/1.0)"}


def _valid_pair(lat: float, lng: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lng <= 180


def parse_coords_from_text(text: str) -> Optional[LatLng]:
    if not text:
        return None
    m = COORDS_REGEX.search(text)
    if not m:
        return None
    lat, lng = float(m.group(1)), float(m.group(2))
    if not _valid_pair(lat, lng):
        return None
    return LatLng(lat=lat, lng=lng)


def strip_coords(text: str) -> str:
    """Text with the coordinate pair removed and leftover separators trimmed."""
    remainder = COORDS_REGEX.sub(" ", text or "")
    remainder = re.sub(r"\s+", " ", remainder)
    return remainder.strip(" ,;:-\n\t")


def extract_first_url(text: str) -> Optional[str]:
    if not text:
        return None
    m = URL_REGEX.search(text)
    return m.group(0).rstrip(").,") if m else None


def is_maps_url(url: Optional[str]) -> bool:
    """True only for http(s) links on a Google Maps host."""
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return False
    host = (parts.hostname or "").lower()
    if parts.scheme.lower() not in ("http", "https") or not host or port not in (None, 80, 443):
        return False
    path = parts.path.lower()
    if host in MAPS_SHORT_HOSTS or MAPS_GOOGLE_HOST.fullmatch(host):
        return True
    if host == "goo.gl" or GOOGLE_HOST.fullmatch(host):
        return path == "/maps" or path.startswith("/maps/")
    return False


def resolve_final_url(url: str, max_hops: int = MAX_REDIRECT_HOPS) -> str:
    """Follow redirects by hand, at most ``max_hops`` requests.

    Only Maps hosts are fetched: a redirect that leaves them is returned
    unfetched. Returns the first non-redirect URL, or the last redirect
    target when the hop limit is reached.
    """
    current = url
    for _ in range(max_hops):
        if not is_maps_url(current):
            logger.warning("Not following non-Maps URL %s", current)
            return current
        resp = requests.get(
            current,
            allow_redirects=False,
            headers=REQUEST_HEADERS,
            timeout=REQUEST_TIMEOUT,
        )
        location = resp.headers.get("location") or resp.headers.get("Location")
        if 300 <= resp.status_code < 400 and location:
            current = urljoin(current, location)
            continue
        return current
    logger.warning("Redirect limit reached for %s", url)
    return current


def coords_from_maps_url(url: str) -> Optional[LatLng]:
    """Coordinates embedded in a (possibly shortened) Maps link, or None."""
    try:
        final_url = unquote(resolve_final_url(url))
    except requests.RequestException as e:
        logger.warning("Could not resolve maps link %s: %s", url, e)
        return None

    for pattern in MAPS_COORD_PATTERNS:
        m = pattern.search(final_url)
        if not m:
            continue
        try:
            lat, lng = float(m.group(1)), float(m.group(2))
        except ValueError:
            continue
        if _valid_pair(lat, lng):
            return LatLng(lat=lat, lng=lng)
    logger.info("No coordinates found in maps link %s", final_url)
    return None


def quote_delivery(coords: LatLng, origin: Optional[LatLng] = None,
                   rate_per_km: Optional[float] = None) -> DeliveryQuote:
    origin = origin or LatLng(**Config.restaurant_location())
    rate = Config.delivery_rate() if rate_per_km is None else rate_per_km
    distance = distance_km(origin.lat, origin.lng, coords.lat, coords.lng)
    return DeliveryQuote(
        location=coords,
        distance_km=round(distance, 2),
        cost=delivery_cost(distance, rate),
    )


def apply_delivery_from_coords(session: Session, coords: LatLng, origin: Optional[LatLng] = None,
                               rate_per_km: Optional[float] = None) -> Session:
    """Write a fresh delivery quote onto the session. Does not persist."""
    session.delivery = quote_delivery(coords, origin, rate_per_km)
    return session
