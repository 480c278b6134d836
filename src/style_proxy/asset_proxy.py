"""Second-stage proxies for the references a rewritten style points at.

A proxied style carries base64url tokens for its source references,
sprite and glyphs. These handlers decode the token, check the host
against what is registered for the style, inject the provider credential
and fetch the real resource.
"""

import logging
import re
from typing import Any
from urllib.parse import quote, urlsplit

from style_proxy.byte_cache import ByteCache
from style_proxy.credentials import CredentialStore
from style_proxy.errors import ClientInputError, NotFound, RateLimited, UpstreamNotFound, UpstreamUnavailable
from style_proxy.rate_limiter import SlidingWindowRateLimiter
from style_proxy.registry import ProviderRegistry, StyleDescriptor
from style_proxy.style_rewriter import decode_reference, scrub_document, tile_proxy_template
from style_proxy.tile_proxy import TileResult, guess_content_type
from style_proxy.upstream import UpstreamClient

logger = logging.getLogger(__name__)

SPRITE_FILE = re.compile(r"(?P<token>[A-Za-z0-9_-]+)(?P<variant>(?:@2x)?(?:\.json|\.png)?)")
GLYPH_RANGE = re.compile(r"(?P<start>\d+)-(?P<end>\d+)(?:\.pbf)?")
GLYPH_CONTENT_TYPE = "application/x-protobuf"


def append_variant(url: str, variant: str) -> str:
    """Insert a sprite variant (``@2x.json``, ``.png``...) before the query string."""
    base, sep, query = url.partition("?")
    return f"{base}{variant}{sep}{query}"


class AssetProxy:
    """Source (TileJSON), sprite and glyph proxying for registered styles."""

    def __init__(
        self,
        registry: ProviderRegistry,
        credentials: CredentialStore,
        upstream: UpstreamClient,
        sprite_cache: ByteCache,
        glyph_cache: ByteCache,
        limiter: SlidingWindowRateLimiter,
        source_rate_limit: int = 100,
        asset_rate_limit: int = 500,
        window_seconds: float = 60.0,
        source_timeout: float = 30.0,
        asset_timeout: float = 10.0,
    ):
        self.registry = registry
        self.credentials = credentials
        self.upstream = upstream
        self.sprite_cache = sprite_cache
        self.glyph_cache = glyph_cache
        self.limiter = limiter
        self.source_rate_limit = source_rate_limit
        self.asset_rate_limit = asset_rate_limit
        self.window_seconds = window_seconds
        self.source_timeout = source_timeout
        self.asset_timeout = asset_timeout

    def _check_rate(self, scope: str, client_id: str, limit: int) -> None:
        if not self.limiter.allow(f"{scope}:{client_id}", limit, self.window_seconds):
            raise RateLimited(retry_after=int(self.window_seconds))

    def _resolve(self, style_id: str, token: str) -> tuple[StyleDescriptor, str]:
        descriptor = self.registry.resolve(style_id)
        url = decode_reference(token)
        host = urlsplit(url).hostname
        if host not in descriptor.known_hosts():
            logger.warning("Rejected reference to unregistered host %s for style %s", host, style_id)
            raise ClientInputError("Referenced host is not registered for this style")
        return descriptor, url

    async def get_source(
        self, client_id: str, style_id: str, source_id: str, token: str, origin: str
    ) -> dict[str, Any]:
        """Fetch a source reference (usually TileJSON) and proxy its tiles.

        Raises:
            NotFound: Unknown style id
            ClientInputError: Undecodable token or unregistered host
            RateLimited: Client is over its source budget
            UpstreamUnavailable: Fetch failed or the body is not a JSON object
        """
        self._check_rate("source", client_id, self.source_rate_limit)
        descriptor, url = self._resolve(style_id, token)

        fetch_url = self.credentials.inject_for(url, descriptor.provider)
        document = await self.upstream.get_json(fetch_url, self.source_timeout)
        if not isinstance(document, dict):
            raise UpstreamUnavailable()
        if document.get("tiles"):
            document["tiles"] = [tile_proxy_template(origin, style_id, source_id)]
        logger.info("Source proxy: %s/%s served to %s", style_id, source_id, client_id)
        return scrub_document(document, self.credentials)

    async def get_sprite(self, client_id: str, style_id: str, sprite_file: str) -> TileResult:
        """Fetch a sprite atlas file (``{token}[@2x][.json|.png]``).

        Raises:
            NotFound: Unknown style id or no such sprite upstream
            ClientInputError: Malformed file name, undecodable token or unregistered host
            RateLimited: Client is over its asset budget
            UpstreamUnavailable: Any other upstream failure
        """
        match = SPRITE_FILE.fullmatch(sprite_file)
        if match is None:
            raise ClientInputError("Invalid sprite request")
        self._check_rate("asset", client_id, self.asset_rate_limit)
        descriptor, url = self._resolve(style_id, match["token"])

        target_url = append_variant(url, match["variant"])
        cache_key = f"sprite:{style_id}:{target_url}"
        cached = self.sprite_cache.get(cache_key)
        if cached is not None:
            return TileResult(cached.payload, cached.content_type, cache_hit=True)

        try:
            response = await self.upstream.get_bytes(
                self.credentials.inject_for(target_url, descriptor.provider), self.asset_timeout
            )
        except UpstreamNotFound:
            raise NotFound("Sprite not found") from None

        content_type = guess_content_type(target_url, response.content_type)
        self.sprite_cache.put(cache_key, response.content, content_type)
        return TileResult(response.content, content_type, cache_hit=False)

    async def get_glyphs(
        self, client_id: str, style_id: str, token: str, fontstack: str, range_file: str
    ) -> TileResult:
        """Fetch one glyph range for a font stack.

        A missing range upstream yields an empty body, which renderers
        treat as "no glyphs in this range".

        Raises:
            NotFound: Unknown style id
            ClientInputError: Malformed range, undecodable token or unregistered host
            RateLimited: Client is over its asset budget
            UpstreamUnavailable: Upstream failure other than 404
        """
        match = GLYPH_RANGE.fullmatch(range_file)
        if match is None:
            raise ClientInputError("Invalid glyph range")
        glyph_range = f"{match['start']}-{match['end']}"
        self._check_rate("asset", client_id, self.asset_rate_limit)
        descriptor, template = self._resolve(style_id, token)

        target_url = template.replace("{fontstack}", quote(fontstack, safe=",")).replace("{range}", glyph_range)
        cache_key = f"glyphs:{style_id}:{target_url}"
        cached = self.glyph_cache.get(cache_key)
        if cached is not None:
            return TileResult(cached.payload, cached.content_type, cache_hit=True)

        try:
            response = await self.upstream.get_bytes(
                self.credentials.inject_for(target_url, descriptor.provider),
                self.asset_timeout,
                accept=GLYPH_CONTENT_TYPE,
            )
        except UpstreamNotFound:
            return TileResult(b"", GLYPH_CONTENT_TYPE, cache_hit=False)

        self.glyph_cache.put(cache_key, response.content, GLYPH_CONTENT_TYPE)
        return TileResult(response.content, GLYPH_CONTENT_TYPE, cache_hit=False)
