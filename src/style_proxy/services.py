"""The shared, per-application set of proxy components."""

import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from style_proxy.asset_proxy import AssetProxy
from style_proxy.byte_cache import ByteCache
from style_proxy.config import Settings
from style_proxy.credentials import CredentialStore
from style_proxy.rate_limiter import SlidingWindowRateLimiter
from style_proxy.registry import (
    BUILTIN_STYLES,
    ConfigStore,
    JsonFileConfigStore,
    ProviderRegistry,
    StaticConfigStore,
)
from style_proxy.style_rewriter import StyleRewriter
from style_proxy.tile_proxy import TileProxy
from style_proxy.upstream import UpstreamClient


@dataclass
class ProxyServices:
    """Everything a request handler needs, built once at startup."""

    settings: Settings
    credentials: CredentialStore
    registry: ProviderRegistry
    limiter: SlidingWindowRateLimiter
    style_cache: ByteCache
    tile_cache: ByteCache
    sprite_cache: ByteCache
    glyph_cache: ByteCache
    upstream: UpstreamClient
    styles: StyleRewriter
    tiles: TileProxy
    assets: AssetProxy
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def build(
        cls,
        settings: Settings,
        stores: list[ConfigStore] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ProxyServices":
        """Wire the components together.

        Args:
            settings: Application settings
            stores: Configuration stores for the registry; defaults to the
                built-in table plus ``settings.providers_file``
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        if stores is None:
            stores = [StaticConfigStore(BUILTIN_STYLES)]
            if settings.providers_file:
                stores.append(JsonFileConfigStore(Path(settings.providers_file)))

        credentials = CredentialStore.from_settings(settings)
        registry = ProviderRegistry.from_store(*stores)
        limiter = SlidingWindowRateLimiter(sweep_probability=settings.rate_limit_sweep_probability)
        style_cache = ByteCache(settings.style_cache_ttl, settings.style_cache_max_entries)
        tile_cache = ByteCache(settings.tile_cache_ttl, settings.tile_cache_max_entries)
        sprite_cache = ByteCache(settings.sprite_cache_ttl, settings.asset_cache_max_entries)
        glyph_cache = ByteCache(settings.glyph_cache_ttl, settings.asset_cache_max_entries)
        upstream = UpstreamClient(transport=transport)
        window = settings.rate_limit_window_seconds

        return cls(
            settings=settings,
            credentials=credentials,
            registry=registry,
            limiter=limiter,
            style_cache=style_cache,
            tile_cache=tile_cache,
            sprite_cache=sprite_cache,
            glyph_cache=glyph_cache,
            upstream=upstream,
            styles=StyleRewriter(
                registry,
                credentials,
                upstream,
                style_cache,
                limiter,
                rate_limit=settings.style_rate_limit,
                window_seconds=window,
                timeout=settings.style_fetch_timeout,
            ),
            tiles=TileProxy(
                registry,
                credentials,
                upstream,
                tile_cache,
                limiter,
                rate_limit=settings.tile_rate_limit,
                window_seconds=window,
                timeout=settings.tile_fetch_timeout,
                max_zoom=settings.max_zoom,
            ),
            assets=AssetProxy(
                registry,
                credentials,
                upstream,
                sprite_cache,
                glyph_cache,
                limiter,
                source_rate_limit=settings.source_rate_limit,
                asset_rate_limit=settings.tile_rate_limit,
                window_seconds=window,
                source_timeout=settings.style_fetch_timeout,
                asset_timeout=settings.tile_fetch_timeout,
            ),
        )

    def caches(self) -> dict[str, ByteCache]:
        return {
            "styles": self.style_cache,
            "tiles": self.tile_cache,
            "sprites": self.sprite_cache,
            "glyphs": self.glyph_cache,
        }

    def uptime(self) -> float:
        return time.monotonic() - self.started_at
