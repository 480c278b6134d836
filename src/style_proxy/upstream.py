"""Shared httpx client for every upstream fetch."""

import json
import logging
from typing import Any, NamedTuple

import httpx

from style_proxy.config import SERVICE_VERSION
from style_proxy.credentials import strip_credentials
from style_proxy.errors import UpstreamNotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)

USER_AGENT = f"style-proxy/{SERVICE_VERSION}"


class UpstreamResponse(NamedTuple):
    content: bytes
    content_type: str | None


def get_proxy_headers(accept: str = "*/*") -> dict[str, str]:
    """Headers sent with every upstream request."""
    return {
        "User-Agent": USER_AGENT,
        "Accept": accept,
    }


class UpstreamClient:
    """Fetches upstream resources with a bounded timeout.

    Every failure mode surfaces as ``UpstreamUnavailable`` (or its 404
    subclass ``UpstreamNotFound``) carrying a generic message; the
    upstream body is never passed on.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(
            transport=transport,
            follow_redirects=True,
            headers=get_proxy_headers(),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_bytes(self, url: str, timeout: float, accept: str = "*/*") -> UpstreamResponse:
        """Fetch a URL and return its body.

        Args:
            url: Absolute URL, credentials already injected
            timeout: Total timeout in seconds
            accept: Accept header value

        Raises:
            UpstreamNotFound: The upstream answered 404
            UpstreamUnavailable: Timeout, network error or other non-2xx status
        """
        safe_url = strip_credentials(url)
        try:
            response = await self._client.get(
                url,
                headers={"Accept": accept},
                timeout=httpx.Timeout(timeout),
            )
        except httpx.TimeoutException:
            logger.warning("Upstream timeout after %.1fs: %s", timeout, safe_url)
            raise UpstreamUnavailable() from None
        except httpx.RequestError as e:
            logger.warning("Upstream request failed (%s): %s", type(e).__name__, safe_url)
            raise UpstreamUnavailable() from None

        if response.status_code == 404:
            logger.debug("Upstream 404: %s", safe_url)
            raise UpstreamNotFound()
        if not response.is_success:
            logger.warning("Upstream returned %d: %s", response.status_code, safe_url)
            raise UpstreamUnavailable()

        return UpstreamResponse(
            content=response.content,
            content_type=response.headers.get("content-type"),
        )

    async def get_json(self, url: str, timeout: float) -> Any:
        """Fetch a URL and decode its body as JSON.

        Raises:
            UpstreamUnavailable: Fetch failed or the body is not JSON
        """
        response = await self.get_bytes(url, timeout, accept="application/json")
        return decode_json(response.content, strip_credentials(url))


def decode_json(content: bytes, source: str) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Upstream body is not valid JSON (%s): %s", e, source)
        raise UpstreamUnavailable() from None
