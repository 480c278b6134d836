"""API routes for styles, tiles, asset proxying and style conversion."""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from style_proxy.config import SERVICE_VERSION
from style_proxy.converter import convert_remote_style
from style_proxy.services import ProxyServices
from style_proxy.tile_proxy import TileResult

router = APIRouter()

STYLE_CACHE_CONTROL = "public, max-age=3600, s-maxage=3600"
TILE_CACHE_CONTROL = "public, max-age=86400, s-maxage=86400"
GLYPH_CACHE_CONTROL = "public, max-age=604800"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class ConvertRequest(BaseModel):
    styleUrl: str = ""
    spriteUrl: str | None = None
    glyphsUrl: str | None = None
    fontMapping: dict[str, str | list[str]] | None = None


def get_services(request: Request) -> ProxyServices:
    return request.app.state.services


def client_id_from_request(request: Request) -> str:
    """First address of X-Forwarded-For, else the socket peer."""
    forwarded_for = request.headers.get("x-forwarded-for", "")
    first_ip = forwarded_for.split(",")[0].strip()
    if first_ip:
        return first_ip
    return request.client.host if request.client else "unknown"


def service_origin(request: Request) -> str:
    """Origin written into rewritten styles.

    The configured public base URL wins; otherwise it is derived from the
    forwarded proto/host headers, falling back to the request itself.
    """
    configured = get_services(request).settings.public_base_url
    if configured:
        return configured.rstrip("/")
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto.split(',')[0].strip()}://{host.split(',')[0].strip()}"


def json_response(payload: dict, cache_control: str, headers: dict[str, str] | None = None) -> Response:
    return Response(
        content=json.dumps(payload),
        media_type="application/json",
        headers={"Cache-Control": cache_control, **(headers or {})},
    )


def bytes_response(result: TileResult, cache_control: str) -> Response:
    return Response(
        content=result.content,
        media_type=result.content_type,
        headers={
            "X-Cache": "HIT" if result.cache_hit else "MISS",
            "Cache-Control": cache_control,
        },
    )


@router.get("/health")
async def health(request: Request) -> dict:
    """Liveness with uptime in seconds."""
    return {
        "status": "healthy",
        "version": SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(get_services(request).uptime(), 3),
    }


@router.get("/styles")
async def list_styles(request: Request) -> list[dict[str, str | None]]:
    """List all registered styles."""
    return [
        {"id": d.style_id, "name": d.name, "provider": d.provider.value}
        for d in get_services(request).registry.descriptors()
    ]


@router.get("/style/{style_id}")
async def get_style(style_id: str, request: Request) -> Response:
    """Get a registered style rewritten to use this service for every reference."""
    services = get_services(request)
    style = await services.styles.get_style(
        client_id_from_request(request), style_id, service_origin(request)
    )
    return json_response(
        style,
        STYLE_CACHE_CONTROL,
        {"X-Proxy-Provider": style["metadata"]["originalProvider"]},
    )


@router.get("/tiles/{style_id}/{source_id}/{z}/{x}/{y}")
async def get_tile(style_id: str, source_id: str, z: str, x: str, y: str, request: Request) -> Response:
    """Proxy a tile with caching and credential injection.

    Args:
        style_id: Registered style id (e.g., "maptiler-streets-v2")
        source_id: Source name within the style (e.g., "maptiler_planet")
        z: Zoom level
        x: Tile X coordinate
        y: Tile Y coordinate, optionally with an extension such as ".pbf"

    Returns:
        Tile response with X-Cache header
    """
    result = await get_services(request).tiles.get_tile(
        client_id_from_request(request), style_id, source_id, z, x, y
    )
    return bytes_response(result, TILE_CACHE_CONTROL)


@router.get("/source/{style_id}/{source_id}/{encoded_url}")
async def get_source(style_id: str, source_id: str, encoded_url: str, request: Request) -> Response:
    """Proxy a source reference (TileJSON) with its tile URLs rewritten."""
    document = await get_services(request).assets.get_source(
        client_id_from_request(request), style_id, source_id, encoded_url, service_origin(request)
    )
    return json_response(document, STYLE_CACHE_CONTROL)


@router.get("/sprite/{style_id}/{sprite_file}")
async def get_sprite(style_id: str, sprite_file: str, request: Request) -> Response:
    """Proxy sprite files: {encoded}, {encoded}.json, {encoded}@2x.png and so on."""
    result = await get_services(request).assets.get_sprite(
        client_id_from_request(request), style_id, sprite_file
    )
    return bytes_response(result, TILE_CACHE_CONTROL)


@router.get("/glyphs/{style_id}/{encoded_url}/{fontstack}/{range_file}")
async def get_glyphs(
    style_id: str, encoded_url: str, fontstack: str, range_file: str, request: Request
) -> Response:
    """Proxy a glyph range for a font stack."""
    result = await get_services(request).assets.get_glyphs(
        client_id_from_request(request), style_id, encoded_url, fontstack, range_file
    )
    return bytes_response(result, GLYPH_CACHE_CONTROL)


@router.post("/convert")
async def convert(body: ConvertRequest, request: Request) -> dict:
    """Convert a foreign (ESRI) style into a plain MapLibre style."""
    services = get_services(request)
    result = await convert_remote_style(
        services.upstream,
        body.styleUrl,
        sprite_url=body.spriteUrl,
        glyphs_url=body.glyphsUrl,
        font_mapping=body.fontMapping,
        timeout=services.settings.convert_fetch_timeout,
    )
    return {"style": result.style, "cached": False, "statistics": result.statistics}


# ----- Cache Management Endpoints -----


@router.get("/cache/stats")
async def cache_stats(request: Request) -> dict:
    """Get statistics for every cache."""
    return {name: cache.stats() for name, cache in get_services(request).caches().items()}


@router.delete("/cache/{prefix}")
async def invalidate_cache(prefix: str, request: Request) -> dict:
    """Invalidate cache entries by key prefix, or everything.

    Args:
        prefix: Key prefix to invalidate (e.g. a style id), or "all"

    Returns:
        Dict with count of invalidated entries
    """
    key = None if prefix == "all" else prefix
    count = sum(cache.invalidate(key) for cache in get_services(request).caches().values())
    return {"invalidated": count, "key": prefix}


@router.options("/{path:path}")
async def options(path: str) -> Response:
    """Answer OPTIONS that are not CORS preflights."""
    return Response(status_code=200, headers=CORS_HEADERS)
