"""FastAPI application for the map style and tile proxy."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from style_proxy.config import SERVICE_VERSION, Settings, get_settings
from style_proxy.errors import install_exception_handlers
from style_proxy.log import setup_logging
from style_proxy.registry import ConfigStore
from style_proxy.routes import api
from style_proxy.services import ProxyServices


def create_app(
    settings: Settings | None = None,
    stores: list[ConfigStore] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the application and its shared proxy services."""
    settings = settings or get_settings()
    services = ProxyServices.build(settings, stores=stores, transport=transport)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(
            level=settings.log_level,
            json_output=settings.log_json,
            param_names=services.credentials.param_names,
            secrets=services.credentials.secrets,
        )
        yield
        await services.upstream.aclose()

    app = FastAPI(
        title="Map Style Proxy",
        description="Serves third-party map styles and tiles without exposing provider keys",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["X-Cache", "Retry-After"],
    )
    install_exception_handlers(app)
    app.include_router(api.router, tags=["proxy"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("style_proxy.main:app", host=settings.host, port=settings.port)
