"""Error taxonomy for the proxy and its JSON rendering."""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_UPSTREAM_MESSAGE = "Failed to fetch upstream resource"


class ProxyError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}

    def headers(self) -> dict[str, str]:
        return {}


class ClientInputError(ProxyError):
    """Bad id, bad coordinates or bad URL supplied by the client."""

    status_code = 400


class NotFound(ProxyError):
    """Unknown style or source id.

    Carries the known ids so callers can see what is available.
    """

    status_code = 404

    def __init__(self, message: str, available: list[str] | None = None) -> None:
        super().__init__(message)
        self.available = available

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.available is not None:
            payload["available"] = self.available
        return payload


class TileNotFound(NotFound):
    """The upstream has no tile at the requested coordinate."""

    def __init__(self) -> None:
        super().__init__("Tile not found")


class RateLimited(ProxyError):
    status_code = 429

    def __init__(self, retry_after: int) -> None:
        super().__init__("Too many requests")
        self.retry_after = retry_after

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, "retryAfter": self.retry_after}

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamUnavailable(ProxyError):
    """Network failure, timeout, non-2xx or unparsable upstream body.

    The message sent to the client is always generic; the upstream body,
    headers and URL are never echoed.
    """

    status_code = 502

    def __init__(self, message: str = GENERIC_UPSTREAM_MESSAGE) -> None:
        super().__init__(message)


class UpstreamNotFound(UpstreamUnavailable):
    """Upstream answered 404."""

    def __init__(self) -> None:
        super().__init__("Upstream resource not found")


async def _proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers(),
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "fields": fields})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def install_exception_handlers(app: FastAPI) -> None:
    """Register JSON renderers for the proxy error taxonomy."""
    app.add_exception_handler(ProxyError, _proxy_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
