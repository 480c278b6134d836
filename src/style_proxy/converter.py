"""Conversion of ESRI vector tile styles into plain MapLibre styles.

Main conversions:
- relative sprite, glyphs and source references become absolute URLs
  under the style's logical base URL
- vector sources without a tiles list get one synthesized
- fonts are remapped to families MapLibre glyph servers actually serve
- vendor-specific (``esri:``) layer properties are dropped

The converted style keeps pointing at the real upstream hosts; it is
meant for one-off import, not for the live proxy.
"""

import copy
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Mapping, NamedTuple
from urllib.parse import urlsplit

from style_proxy.config import SERVICE_VERSION
from style_proxy.credentials import strip_credentials
from style_proxy.errors import ClientInputError, UpstreamUnavailable
from style_proxy.upstream import UpstreamClient

logger = logging.getLogger(__name__)

# Map ESRI fonts to MapLibre-compatible fonts; the first entry is used
DEFAULT_FONT_MAPPING: dict[str, list[str]] = {
    "Public Sans Regular": ["Open Sans Regular", "Noto Sans Regular", "Arial Unicode MS Regular"],
    "Public Sans Medium": ["Open Sans SemiBold", "Noto Sans Medium", "Arial Unicode MS Bold"],
    "Public Sans Bold": ["Open Sans Bold", "Noto Sans Bold", "Arial Unicode MS Bold"],
    "Public Sans Italic": ["Open Sans Italic", "Noto Sans Italic", "Arial Unicode MS Regular"],
    "Public Sans Light": ["Open Sans Light", "Noto Sans Light", "Arial Unicode MS Regular"],
}

VENDOR_PREFIXES = ("esri:",)

# Path segment the logical base URL is truncated at
BASE_SEGMENT = "resources"

TILE_PATH = "/tile/{z}/{y}/{x}.pbf"


class ConversionResult(NamedTuple):
    style: dict[str, Any]
    statistics: dict[str, Any]


def validate_style_url(style_url: str) -> str:
    """Reject anything that is not an absolute http(s) URL.

    Raises:
        ClientInputError: The URL is missing or malformed
    """
    if not isinstance(style_url, str) or not style_url.strip():
        raise ClientInputError("Style URL is required")
    parts = urlsplit(style_url.strip())
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ClientInputError("Invalid URL format")
    return style_url.strip()


def extract_base_url(style_url: str) -> str:
    """Logical base URL of a style document.

    The path is cut after its ``resources`` segment; without one, the
    directory holding the document is used. Query and fragment are dropped.

    Example:
        https://host/root/resources/styles/root.json -> https://host/root/resources
    """
    parts = urlsplit(validate_style_url(style_url))
    segments = parts.path.split("/")
    if BASE_SEGMENT in segments[1:]:
        segments = segments[: segments.index(BASE_SEGMENT, 1) + 1]
    else:
        segments = segments[:-1]
    return f"{parts.scheme}://{parts.netloc}{'/'.join(segments)}".rstrip("/")


def absolutize(reference: str, base_url: str) -> str:
    """Turn a relative reference into an absolute URL under ``base_url``.

    Leading ``../`` and ``./`` steps are dropped rather than walked, since
    ESRI styles express paths relative to the resources root that way.
    """
    if not reference or reference.startswith(("http://", "https://")):
        return reference
    if reference.startswith("//"):
        return f"{urlsplit(base_url).scheme}:{reference}"
    if reference.startswith("/"):
        parts = urlsplit(base_url)
        return f"{parts.scheme}://{parts.netloc}{reference}"
    path = reference
    while path.startswith(("../", "./")):
        path = path[3:] if path.startswith("../") else path[2:]
    return f"{base_url}/{path}"


def synthesize_tile_template(style_url: str) -> str:
    """Conventional ``VectorTileServer`` tile path for a style URL."""
    parts = urlsplit(style_url)
    service_path = re.sub(r"/resources/styles/.*$", "", parts.path)
    if service_path == parts.path:
        service_path = parts.path.rsplit("/", 1)[0]
    return f"{parts.scheme}://{parts.netloc}{service_path}{TILE_PATH}"


def remap_fonts(fonts: list[Any], mapping: Mapping[str, str | list[str]]) -> list[Any]:
    remapped = []
    for font in fonts:
        target = mapping.get(font) if isinstance(font, str) else None
        if isinstance(target, list):
            target = target[0] if target else None
        remapped.append(target or font)
    return remapped


def _is_vendor_key(key: str) -> bool:
    return key.startswith(VENDOR_PREFIXES)


def convert_layer(layer: dict[str, Any], mapping: Mapping[str, str | list[str]]) -> dict[str, Any]:
    converted = {key: value for key, value in layer.items() if not _is_vendor_key(key)}
    for group in ("layout", "paint"):
        props = converted.get(group)
        if isinstance(props, dict):
            converted[group] = {key: value for key, value in props.items() if not _is_vendor_key(key)}

    layout = converted.get("layout")
    if isinstance(layout, dict) and isinstance(layout.get("text-font"), list):
        layout["text-font"] = remap_fonts(layout["text-font"], mapping)
    return converted


def _convert_sources(sources: dict[str, Any], style_url: str, base_url: str) -> dict[str, Any]:
    converted = {}
    for source_id, source in sources.items():
        if not isinstance(source, dict):
            converted[source_id] = source
            continue
        source = dict(source)
        tiles = source.get("tiles")
        if isinstance(tiles, list) and tiles:
            source["tiles"] = [strip_credentials(absolutize(t, base_url)) for t in tiles]
        elif source.get("type") == "vector":
            source["tiles"] = [synthesize_tile_template(style_url)]

        if source.get("tiles"):
            source.pop("url", None)
        elif isinstance(source.get("url"), str):
            source["url"] = strip_credentials(absolutize(source["url"], base_url))

        if source.get("type") == "vector" and not source.get("scheme"):
            source["scheme"] = "xyz"
        converted[source_id] = source
    return converted


def _compact_size(document: Any) -> int:
    return len(json.dumps(document, separators=(",", ":"), ensure_ascii=False))


def compute_statistics(original: dict[str, Any], converted: dict[str, Any]) -> dict[str, Any]:
    """Informational counts used to sanity-check a conversion."""
    layers = converted.get("layers") or []
    layer_types: dict[str, int] = {}
    for layer in layers:
        layer_type = layer.get("type", "unknown") if isinstance(layer, dict) else "unknown"
        layer_types[layer_type] = layer_types.get(layer_type, 0) + 1

    original_size = _compact_size(original)
    converted_size = _compact_size(converted)
    return {
        "layerCount": len(layers),
        "sourceCount": len(converted.get("sources") or {}),
        "layerTypes": layer_types,
        "originalSize": original_size,
        "convertedSize": converted_size,
        "compressionRatio": round(1 - converted_size / original_size, 2),
    }


def convert_style(
    document: dict[str, Any],
    style_url: str,
    sprite_url: str | None = None,
    glyphs_url: str | None = None,
    font_mapping: Mapping[str, str | list[str]] | None = None,
) -> ConversionResult:
    """Convert an ESRI style document to a MapLibre style.

    Args:
        document: The original style JSON (not modified)
        style_url: URL the document was fetched from; relative references resolve against it
        sprite_url: Explicit sprite URL, overrides the document's
        glyphs_url: Explicit glyphs URL template, overrides the document's
        font_mapping: Extra font mappings, merged over the defaults

    Returns:
        ConversionResult with the converted style and statistics

    Raises:
        ClientInputError: ``style_url`` is malformed
    """
    base_url = extract_base_url(style_url)
    converted = copy.deepcopy(document)

    if sprite_url:
        converted["sprite"] = sprite_url
    elif isinstance(converted.get("sprite"), str):
        converted["sprite"] = strip_credentials(absolutize(converted["sprite"], base_url))

    if glyphs_url:
        converted["glyphs"] = glyphs_url
    elif isinstance(converted.get("glyphs"), str):
        converted["glyphs"] = strip_credentials(absolutize(converted["glyphs"], base_url))

    if isinstance(converted.get("sources"), dict):
        converted["sources"] = _convert_sources(converted["sources"], style_url, base_url)

    mapping = {**DEFAULT_FONT_MAPPING, **(font_mapping or {})}
    if isinstance(converted.get("layers"), list):
        converted["layers"] = [
            convert_layer(layer, mapping) if isinstance(layer, dict) else layer
            for layer in converted["layers"]
        ]

    metadata = converted.get("metadata")
    converted["metadata"] = {
        **(metadata if isinstance(metadata, dict) else {}),
        "converted": True,
        "convertedFrom": "ESRI",
        "convertedAt": datetime.now(timezone.utc).isoformat(),
        "converterVersion": SERVICE_VERSION,
        "originalUrl": strip_credentials(style_url),
    }

    return ConversionResult(converted, compute_statistics(document, converted))


async def convert_remote_style(
    upstream: UpstreamClient,
    style_url: str,
    sprite_url: str | None = None,
    glyphs_url: str | None = None,
    font_mapping: Mapping[str, str | list[str]] | None = None,
    timeout: float = 30.0,
) -> ConversionResult:
    """Fetch a style over HTTP and convert it.

    Raises:
        ClientInputError: ``style_url`` is malformed (checked before any request)
        UpstreamUnavailable: Fetch failed, or the body is not a JSON object
    """
    style_url = validate_style_url(style_url)
    response = await upstream.get_bytes(style_url, timeout, accept="application/json")
    try:
        document = json.loads(response.content)
    except json.JSONDecodeError as e:
        raise UpstreamUnavailable(
            f"Upstream style is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})"
        ) from None
    except UnicodeDecodeError:
        raise UpstreamUnavailable("Upstream style is not valid JSON: undecodable bytes") from None
    if not isinstance(document, dict):
        raise UpstreamUnavailable("Upstream style is not a JSON object")

    result = convert_style(document, style_url, sprite_url, glyphs_url, font_mapping)
    logger.info(
        "Converted %s: %d layers, %d sources",
        strip_credentials(style_url),
        result.statistics["layerCount"],
        result.statistics["sourceCount"],
    )
    return result
