"""Rewriting of upstream style documents into their proxied, key-free form.

Tile templates become ``{origin}/tiles/{style}/{source}/{z}/{x}/{y}``.
Source references, sprite and glyphs become second-stage proxy URLs that
carry the original (credential-stripped) upstream URL as a base64url
token, so the client never sees the raw upstream location.
"""

import base64
import binascii
import copy
import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urljoin, urlsplit

from style_proxy.byte_cache import ByteCache
from style_proxy.config import SERVICE_VERSION
from style_proxy.credentials import CredentialStore
from style_proxy.errors import ClientInputError, RateLimited, UpstreamUnavailable
from style_proxy.rate_limiter import SlidingWindowRateLimiter
from style_proxy.registry import ProviderRegistry, StyleDescriptor
from style_proxy.upstream import UpstreamClient, decode_json

logger = logging.getLogger(__name__)

STYLE_CONTENT_TYPE = "application/json"


def encode_reference(url: str) -> str:
    """Reversible, path-safe encoding of an upstream URL."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def decode_reference(token: str) -> str:
    """Decode a token made by ``encode_reference``.

    Raises:
        ClientInputError: The token is not base64url or does not decode to an http(s) URL
    """
    padded = token + "=" * (-len(token) % 4)
    try:
        url = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise ClientInputError("Invalid encoded URL") from None
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ClientInputError("Invalid encoded URL")
    return url


def tile_proxy_template(origin: str, style_id: str, source_id: str) -> str:
    return f"{origin}/tiles/{style_id}/{source_id}/{{z}}/{{x}}/{{y}}"


def _absolute(reference: str, base_url: str) -> str:
    """Resolve a reference against the upstream style's own URL."""
    return urljoin(base_url, reference)


def _is_http(url: str) -> bool:
    return urlsplit(url).scheme in ("http", "https")


def scrub_document(value: Any, credentials: CredentialStore) -> Any:
    """Copy of a JSON value with credentials removed from every string."""
    if isinstance(value, str):
        return credentials.scrub(value)
    if isinstance(value, list):
        return [scrub_document(item, credentials) for item in value]
    if isinstance(value, dict):
        return {key: scrub_document(item, credentials) for key, item in value.items()}
    return value


def validate_style_document(document: Any) -> dict[str, Any]:
    """Structural checks needed before a document can be rewritten safely.

    Raises:
        UpstreamUnavailable: The document is not a style-shaped JSON object
    """
    if not isinstance(document, dict):
        raise UpstreamUnavailable()
    sources = document.get("sources", {})
    if not isinstance(sources, dict) or not all(isinstance(s, dict) for s in sources.values()):
        raise UpstreamUnavailable()
    layers = document.get("layers", [])
    if not isinstance(layers, list):
        raise UpstreamUnavailable()
    return document


class StyleRewriter:
    """Fetches styles through the registry and serves them rewritten."""

    def __init__(
        self,
        registry: ProviderRegistry,
        credentials: CredentialStore,
        upstream: UpstreamClient,
        cache: ByteCache,
        limiter: SlidingWindowRateLimiter,
        rate_limit: int = 100,
        window_seconds: float = 60.0,
        timeout: float = 30.0,
    ):
        self.registry = registry
        self.credentials = credentials
        self.upstream = upstream
        self.cache = cache
        self.limiter = limiter
        self.rate_limit = rate_limit
        self.window_seconds = window_seconds
        self.timeout = timeout

    async def get_style(self, client_id: str, style_id: str, origin: str) -> dict[str, Any]:
        """Return the proxied style for ``style_id``.

        Raises:
            NotFound: Unknown style id
            RateLimited: Client is over its style budget
            UpstreamUnavailable: Upstream fetch or parse failed
        """
        if not self.limiter.allow(f"style:{client_id}", self.rate_limit, self.window_seconds):
            raise RateLimited(retry_after=int(self.window_seconds))

        descriptor = self.registry.resolve(style_id)

        document = await self._fetch_upstream(descriptor)
        proxied = self.rewrite(document, descriptor, origin)
        logger.info("Style proxy: %s served to %s", style_id, client_id)
        return proxied

    async def _fetch_upstream(self, descriptor: StyleDescriptor) -> dict[str, Any]:
        cached = self.cache.get(descriptor.style_id)
        if cached is not None:
            return decode_json(cached.payload, descriptor.upstream_url)

        fetch_url = self.credentials.inject_for(descriptor.upstream_url, descriptor.provider)
        response = await self.upstream.get_bytes(fetch_url, self.timeout, accept=STYLE_CONTENT_TYPE)
        document = validate_style_document(decode_json(response.content, descriptor.upstream_url))
        # Only documents that parsed and validated are cached
        self.cache.put(descriptor.style_id, response.content, STYLE_CONTENT_TYPE)
        return document

    def rewrite(self, document: dict[str, Any], descriptor: StyleDescriptor, origin: str) -> dict[str, Any]:
        """Rewrite every upstream reference in a style to point at this service.

        Args:
            document: Upstream style JSON (not modified)
            descriptor: Registry entry of the style
            origin: Service origin, e.g. ``https://maps.example.com``

        Returns:
            The proxied style document
        """
        style = copy.deepcopy(validate_style_document(document))
        style_id = descriptor.style_id
        base_url = self.credentials.strip(descriptor.upstream_url)

        for source_id, source in style.get("sources", {}).items():
            if source.get("tiles"):
                source["tiles"] = [tile_proxy_template(origin, style_id, source_id)]
                # tiles win when both are present
                source.pop("url", None)
            elif isinstance(source.get("url"), str):
                source["url"] = self._proxy_reference(
                    f"{origin}/source/{style_id}/{source_id}", source["url"], base_url
                )

        sprite = style.get("sprite")
        if isinstance(sprite, str):
            style["sprite"] = self._proxy_reference(f"{origin}/sprite/{style_id}", sprite, base_url)
        elif isinstance(sprite, list):
            for entry in sprite:
                if isinstance(entry, dict) and isinstance(entry.get("url"), str):
                    entry["url"] = self._proxy_reference(f"{origin}/sprite/{style_id}", entry["url"], base_url)

        glyphs = style.get("glyphs")
        if isinstance(glyphs, str):
            style["glyphs"] = (
                self._proxy_reference(f"{origin}/glyphs/{style_id}", glyphs, base_url)
                + "/{fontstack}/{range}.pbf"
            )

        metadata = style.get("metadata")
        style["metadata"] = {
            **(metadata if isinstance(metadata, dict) else {}),
            "proxied": True,
            "proxyVersion": SERVICE_VERSION,
            "originalProvider": descriptor.provider.value,
            "proxiedAt": datetime.now(timezone.utc).isoformat(),
        }
        return scrub_document(style, self.credentials)

    def _proxy_reference(self, prefix: str, reference: str, base_url: str) -> str:
        url = self.credentials.strip(_absolute(reference, base_url))
        if not _is_http(url):
            # mapbox:// and similar schemes cannot be proxied; keep them key-free
            return url
        return f"{prefix}/{encode_reference(url)}"
