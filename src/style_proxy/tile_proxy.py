"""Tile fetching with rate limiting, caching and credential injection."""

import logging
import random
from typing import NamedTuple

from style_proxy.byte_cache import ByteCache
from style_proxy.credentials import CredentialStore
from style_proxy.errors import ClientInputError, RateLimited, TileNotFound, UpstreamNotFound
from style_proxy.rate_limiter import SlidingWindowRateLimiter
from style_proxy.registry import ProviderRegistry
from style_proxy.upstream import UpstreamClient

logger = logging.getLogger(__name__)

# Clients may request ".../{y}.pbf"; the extension is informational only
TILE_EXTENSIONS = (".pbf", ".mvt", ".png", ".jpg", ".jpeg", ".webp")

EXTENSION_CONTENT_TYPES = {
    ".pbf": "application/x-protobuf",
    ".mvt": "application/vnd.mapbox-vector-tile",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".json": "application/json",
}


class TileCoordinate(NamedTuple):
    z: int
    x: int
    y: int


class TileResult(NamedTuple):
    content: bytes
    content_type: str
    cache_hit: bool


def parse_coordinate(value: str, name: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise ClientInputError(f"Invalid tile coordinate {name}: must be a non-negative integer")
    return int(value)


def parse_tile_coordinate(z: str, x: str, y: str, max_zoom: int = 22) -> TileCoordinate:
    """Validate raw path segments as a tile coordinate.

    Raises:
        ClientInputError: A value is not a non-negative integer, or zoom is out of range
    """
    for ext in TILE_EXTENSIONS:
        if y.lower().endswith(ext):
            y = y[: -len(ext)]
            break
    coordinate = TileCoordinate(
        parse_coordinate(z, "z"),
        parse_coordinate(x, "x"),
        parse_coordinate(y, "y"),
    )
    if coordinate.z > max_zoom:
        raise ClientInputError(f"Invalid zoom level: must be between 0 and {max_zoom}")
    limit = 1 << coordinate.z
    if coordinate.x >= limit or coordinate.y >= limit:
        raise ClientInputError(f"Invalid tile coordinate: x and y must be below {limit} at zoom {coordinate.z}")
    return coordinate


def build_tile_url(url_template: str, coordinate: TileCoordinate) -> str:
    """Substitute the {z}, {x}, {y} placeholders of a tile template."""
    return (
        url_template.replace("{z}", str(coordinate.z))
        .replace("{x}", str(coordinate.x))
        .replace("{y}", str(coordinate.y))
    )


def guess_content_type(url: str, header: str | None) -> str:
    """Content type from the upstream header, else from the URL extension."""
    if header:
        return header
    path = url.split("?", 1)[0].lower()
    for ext, content_type in EXTENSION_CONTENT_TYPES.items():
        if path.endswith(ext):
            return content_type
    return "application/x-protobuf"


class TileProxy:
    """Serves tiles for registered styles through the byte cache."""

    def __init__(
        self,
        registry: ProviderRegistry,
        credentials: CredentialStore,
        upstream: UpstreamClient,
        cache: ByteCache,
        limiter: SlidingWindowRateLimiter,
        rate_limit: int = 500,
        window_seconds: float = 60.0,
        timeout: float = 10.0,
        max_zoom: int = 22,
    ):
        self.registry = registry
        self.credentials = credentials
        self.upstream = upstream
        self.cache = cache
        self.limiter = limiter
        self.rate_limit = rate_limit
        self.window_seconds = window_seconds
        self.timeout = timeout
        self.max_zoom = max_zoom

    async def get_tile(
        self,
        client_id: str,
        style_id: str,
        source_id: str,
        z: str,
        x: str,
        y: str,
    ) -> TileResult:
        """Return tile bytes, from cache when possible.

        Raises:
            ClientInputError: Bad coordinates (checked before anything else)
            RateLimited: Client is over its tile budget
            NotFound: Unknown style or source
            TileNotFound: Upstream has no such tile
            UpstreamUnavailable: Any other upstream failure
        """
        coordinate = parse_tile_coordinate(z, x, y, self.max_zoom)

        if not self.limiter.allow(f"tile:{client_id}", self.rate_limit, self.window_seconds):
            raise RateLimited(retry_after=int(self.window_seconds))

        cache_key = f"{style_id}/{source_id}/{coordinate.z}/{coordinate.x}/{coordinate.y}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            if random.random() < 0.01:
                logger.info("Tile proxy hit: %s to %s", cache_key, client_id)
            return TileResult(cached.payload, cached.content_type, cache_hit=True)

        descriptor = self.registry.resolve(style_id)
        template = self.registry.tile_template(style_id, source_id)
        tile_url = build_tile_url(template, coordinate)
        fetch_url = self.credentials.inject_for(tile_url, descriptor.provider)

        try:
            response = await self.upstream.get_bytes(fetch_url, self.timeout)
        except UpstreamNotFound:
            raise TileNotFound() from None

        content_type = guess_content_type(tile_url, response.content_type)
        self.cache.put(cache_key, response.content, content_type)
        logger.debug("Tile proxy miss: %s to %s", cache_key, client_id)
        return TileResult(response.content, content_type, cache_hit=False)
