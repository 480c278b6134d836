#!/usr/bin/env python3
"""Convert an ESRI vector tile style to a MapLibre style file.

Fetches the style, rewrites relative URLs to absolute ones, remaps fonts
and drops ESRI-only properties, then writes the result to disk.

Usage:
    uv run scripts/convert_style.py <style-url> [output-path] [--sprite URL] [--glyphs URL]

Example:
    uv run scripts/convert_style.py \
        "https://example.com/arcgis/rest/services/Basemap/VectorTileServer/resources/styles/root.json" \
        styles/basemap.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from style_proxy.converter import ConversionResult, convert_remote_style
from style_proxy.errors import ProxyError
from style_proxy.upstream import UpstreamClient


async def fetch_and_convert(args: argparse.Namespace) -> ConversionResult:
    upstream = UpstreamClient()
    try:
        return await convert_remote_style(
            upstream,
            args.style_url,
            sprite_url=args.sprite,
            glyphs_url=args.glyphs,
            timeout=args.timeout,
        )
    finally:
        await upstream.aclose()


def print_summary(result: ConversionResult, output_path: Path) -> None:
    style = result.style
    stats = result.statistics
    print("=" * 60)
    print("Conversion Summary")
    print("=" * 60)
    print(f"Sprite:  {style.get('sprite')}")
    print(f"Glyphs:  {style.get('glyphs')}")
    print(f"Layers:  {stats['layerCount']}, Sources: {stats['sourceCount']}")
    for layer_type, count in sorted(stats["layerTypes"].items()):
        print(f"         {layer_type}: {count}")
    print(f"Size:    {stats['originalSize']} -> {stats['convertedSize']} bytes")
    print(f"[OK] Saved to: {output_path}")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="ESRI to MapLibre style converter")
    parser.add_argument("style_url")
    parser.add_argument("output_path", nargs="?", default="converted-style.json")
    parser.add_argument("--sprite", help="Override sprite URL")
    parser.add_argument("--glyphs", help="Override glyphs URL template")
    parser.add_argument("--timeout", type=float, default=30.0)
    args = parser.parse_args()

    print(f"[INFO] Fetching style from: {args.style_url}")
    try:
        result = asyncio.run(fetch_and_convert(args))
    except ProxyError as e:
        print(f"[ERROR] Conversion failed: {e.message}")
        return 1

    output_path = Path(args.output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(result.style, indent=2))
    print_summary(result, output_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
