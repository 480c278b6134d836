"""Shared fixtures: a fake upstream served through httpx.MockTransport."""

import json
from typing import Any, Callable
from urllib.parse import urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

from style_proxy.config import Settings
from style_proxy.main import create_app
from style_proxy.registry import StaticConfigStore
from style_proxy.services import ProxyServices

SECRET = "s3cr3tKey987"

DEMO_RECORDS = {
    "demo": {
        "name": "Demo Streets",
        "upstreamURL": "https://upstream.example/styles/demo/style.json",
        "provider": "maptiler",
        "tileTemplates": {
            "base": "https://upstream.example/tiles/{z}/{x}/{y}.pbf",
            "default": "https://upstream.example/tiles/{z}/{x}/{y}.pbf",
        },
    },
    "open": {
        "name": "Open Basemap",
        "upstreamURL": "https://open.example/style.json",
        "provider": "basemap.de",
        "tileTemplates": {"default": "https://open.example/tiles/{z}/{x}/{y}.png"},
    },
}


def demo_style() -> dict[str, Any]:
    """Upstream style document as the provider serves it, keys included."""
    return {
        "version": 8,
        "name": "Demo",
        "sources": {
            "base": {
                "type": "vector",
                "tiles": [f"https://upstream.example/tiles/{{z}}/{{x}}/{{y}}.pbf?key={SECRET}"],
                "attribution": f'<a href="https://upstream.example/copyright?key={SECRET}">Upstream</a>',
            },
            "terrain": {
                "type": "raster-dem",
                "url": f"https://upstream.example/terrain/tiles.json?key={SECRET}",
            },
        },
        "sprite": f"https://upstream.example/sprites/demo?key={SECRET}",
        "glyphs": f"https://upstream.example/fonts/{{fontstack}}/{{range}}.pbf?key={SECRET}",
        "layers": [
            {"id": "background", "type": "background", "paint": {"background-color": "#fff"}},
            {"id": "roads", "type": "line", "source": "base", "source-layer": "transportation"},
        ],
    }


class FakeUpstream:
    """Routes requests by host and path and records every request it sees."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        body: Any = b"",
        status: int = 200,
        content_type: str | None = None,
    ) -> None:
        if isinstance(body, (dict, list)):
            content = json.dumps(body).encode()
            content_type = content_type or "application/json"
        elif isinstance(body, str):
            content = body.encode()
        else:
            content = body
        headers = {"content-type": content_type} if content_type else {}
        self.routes[self._key(url)] = lambda request: httpx.Response(status, content=content, headers=headers)

    def add_error(self, url: str, exc: Exception) -> None:
        def raise_error(request: httpx.Request) -> httpx.Response:
            raise exc

        self.routes[self._key(url)] = raise_error

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404, content=b"no such thing on internal-host-17")
        return route(request)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def _key(url: str) -> tuple[str, str]:
        parts = urlsplit(url)
        return parts.hostname, parts.path


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, maptiler_api_key=SECRET, public_base_url="")


@pytest.fixture
def upstream() -> FakeUpstream:
    fake = FakeUpstream()
    fake.add("https://upstream.example/styles/demo/style.json", demo_style())
    fake.add("https://upstream.example/tiles/5/10/12.pbf", b"\x1a\x02tile-5-10-12", content_type="application/x-protobuf")
    return fake


@pytest.fixture
def services(settings: Settings, upstream: FakeUpstream) -> ProxyServices:
    return ProxyServices.build(
        settings,
        stores=[StaticConfigStore(DEMO_RECORDS)],
        transport=httpx.MockTransport(upstream.handler),
    )


@pytest.fixture
def make_client(upstream: FakeUpstream) -> Callable[..., TestClient]:
    def build(settings: Settings) -> TestClient:
        app = create_app(
            settings,
            stores=[StaticConfigStore(DEMO_RECORDS)],
            transport=httpx.MockTransport(upstream.handler),
        )
        return TestClient(app)

    return build


@pytest.fixture
def client(make_client: Callable[..., TestClient], settings: Settings) -> TestClient:
    return make_client(settings)
