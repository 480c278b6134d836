"""Tests for the ESRI to MapLibre style converter."""

import copy
import json

import httpx
import pytest

from style_proxy.converter import (
    absolutize,
    convert_layer,
    convert_remote_style,
    convert_style,
    extract_base_url,
    remap_fonts,
    synthesize_tile_template,
)
from style_proxy.errors import ClientInputError, UpstreamUnavailable
from style_proxy.upstream import UpstreamClient

STYLE_URL = "https://host/root/resources/styles/root.json"
BASE_URL = "https://host/root/resources"


def esri_style() -> dict:
    return {
        "version": 8,
        "sprite": "../resources/sprites/sprite",
        "glyphs": "../resources/fonts/{fontstack}/{range}.pbf",
        "sources": {
            "esri": {"type": "vector", "url": "../../"},
            "hillshade": {"type": "raster", "url": "./hillshade/tilemap.json?token=abc"},
        },
        "layers": [
            {"id": "bg", "type": "background", "esri:legend": "x"},
            {
                "id": "water",
                "type": "fill",
                "source": "esri",
                "paint": {"fill-color": "#0af", "esri:fill": 1},
            },
            {
                "id": "labels",
                "type": "symbol",
                "source": "esri",
                "layout": {"text-font": ["Public Sans Bold", "Comic Sans"], "esri:text": True},
            },
            {"id": "roads", "type": "line", "source": "esri"},
        ],
    }


def collect_urls(style: dict) -> list[str]:
    urls = [style["sprite"], style["glyphs"]]
    for source in style["sources"].values():
        urls.extend(source.get("tiles", []))
        if "url" in source:
            urls.append(source["url"])
    return urls


class TestBaseUrl:
    """Tests for extract_base_url and absolutize."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            (STYLE_URL, BASE_URL),
            ("https://host/a/resources/styles/root.json?f=json", "https://host/a/resources"),
            ("https://host/a/b/style.json", "https://host/a/b"),
            ("https://host/style.json", "https://host"),
        ],
    )
    def test_extract_base_url(self, url, expected):
        assert extract_base_url(url) == expected

    @pytest.mark.parametrize(
        "reference,expected",
        [
            ("../resources/sprites/sprite", "https://host/root/resources/resources/sprites/sprite"),
            ("../../tile/{z}/{y}/{x}.pbf", "https://host/root/resources/tile/{z}/{y}/{x}.pbf"),
            ("./fonts/{fontstack}/{range}.pbf", "https://host/root/resources/fonts/{fontstack}/{range}.pbf"),
            ("sprites/sprite", "https://host/root/resources/sprites/sprite"),
            ("/abs/path", "https://host/abs/path"),
            ("//cdn.example/s", "https://cdn.example/s"),
            ("https://other.example/s", "https://other.example/s"),
        ],
    )
    def test_absolutize(self, reference, expected):
        assert absolutize(reference, BASE_URL) == expected

    def test_synthesize_tile_template(self):
        assert synthesize_tile_template(STYLE_URL) == "https://host/root/tile/{z}/{y}/{x}.pbf"
        assert synthesize_tile_template("https://host/a/style.json") == "https://host/a/tile/{z}/{y}/{x}.pbf"


class TestLayers:
    """Tests for font remapping and vendor property removal."""

    def test_remap_fonts(self):
        mapping = {"A": ["B", "C"], "D": "E", "F": []}
        assert remap_fonts(["A", "D", "F", "X"], mapping) == ["B", "E", "F", "X"]

    def test_convert_layer_strips_vendor_keys(self):
        layer = esri_style()["layers"][2]
        converted = convert_layer(layer, {"Public Sans Bold": ["Open Sans Bold"]})
        assert converted["layout"] == {"text-font": ["Open Sans Bold", "Comic Sans"]}
        assert "esri:text" in layer["layout"]


class TestConvertStyle:
    """Tests for convert_style."""

    def test_sprite_resolves_under_base(self):
        result = convert_style(esri_style(), STYLE_URL)
        assert result.style["sprite"] == "https://host/root/resources/resources/sprites/sprite"
        assert result.style["glyphs"] == "https://host/root/resources/resources/fonts/{fontstack}/{range}.pbf"

    def test_statistics_match_input(self):
        original = esri_style()
        result = convert_style(original, STYLE_URL)
        stats = result.statistics
        assert stats["layerCount"] == len(original["layers"])
        assert stats["sourceCount"] == len(original["sources"])
        assert stats["layerTypes"] == {"background": 1, "fill": 1, "symbol": 1, "line": 1}
        assert stats["convertedSize"] > 0
        assert stats["compressionRatio"] == round(1 - stats["convertedSize"] / stats["originalSize"], 2)

    def test_every_reference_is_absolute(self):
        result = convert_style(esri_style(), STYLE_URL)
        for url in collect_urls(result.style):
            assert url.startswith("https://"), url
            assert "../" not in url

    def test_vector_source_gets_synthesized_tiles(self):
        source = convert_style(esri_style(), STYLE_URL).style["sources"]["esri"]
        assert source == {
            "type": "vector",
            "tiles": ["https://host/root/tile/{z}/{y}/{x}.pbf"],
            "scheme": "xyz",
        }

    def test_tiles_win_over_url(self):
        document = {
            "version": 8,
            "sources": {"v": {"type": "vector", "url": "../x", "tiles": ["../tile/{z}/{y}/{x}.pbf?token=t"]}},
            "layers": [],
        }
        source = convert_style(document, STYLE_URL).style["sources"]["v"]
        assert source["tiles"] == ["https://host/root/resources/tile/{z}/{y}/{x}.pbf"]
        assert "url" not in source

    def test_raster_url_is_absolutized_and_key_free(self):
        source = convert_style(esri_style(), STYLE_URL).style["sources"]["hillshade"]
        assert source == {"type": "raster", "url": "https://host/root/resources/hillshade/tilemap.json"}

    def test_vendor_properties_are_removed(self):
        body = json.dumps(convert_style(esri_style(), STYLE_URL).style)
        assert "esri:" not in body

    def test_default_and_custom_font_mapping(self):
        layers = convert_style(esri_style(), STYLE_URL).style["layers"]
        assert layers[2]["layout"]["text-font"] == ["Open Sans Bold", "Comic Sans"]

        custom = convert_style(esri_style(), STYLE_URL, font_mapping={"Comic Sans": "Noto Sans Regular"})
        assert custom.style["layers"][2]["layout"]["text-font"] == ["Open Sans Bold", "Noto Sans Regular"]

    def test_overrides_win(self):
        result = convert_style(
            esri_style(),
            STYLE_URL,
            sprite_url="https://cdn.example/sprite",
            glyphs_url="https://cdn.example/{fontstack}/{range}.pbf",
        )
        assert result.style["sprite"] == "https://cdn.example/sprite"
        assert result.style["glyphs"] == "https://cdn.example/{fontstack}/{range}.pbf"

    def test_provenance_metadata(self):
        metadata = convert_style(esri_style(), STYLE_URL + "?token=abc").style["metadata"]
        assert metadata["converted"] is True
        assert metadata["convertedFrom"] == "ESRI"
        assert metadata["originalUrl"] == STYLE_URL
        assert metadata["converterVersion"]
        assert metadata["convertedAt"]

    def test_input_is_not_modified(self):
        original = esri_style()
        snapshot = copy.deepcopy(original)
        convert_style(original, STYLE_URL)
        assert original == snapshot

    def test_bad_style_url(self):
        with pytest.raises(ClientInputError):
            convert_style(esri_style(), "not a url")


class TestConvertRemoteStyle:
    """Tests for convert_remote_style."""

    @pytest.mark.asyncio
    async def test_fetches_and_converts(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=esri_style())

        upstream = UpstreamClient(transport=httpx.MockTransport(handler))
        result = await convert_remote_style(upstream, STYLE_URL)
        await upstream.aclose()

        assert str(requests[0].url) == STYLE_URL
        assert result.statistics["layerCount"] == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "   ", "ftp://host/style.json", "host/style.json", "https://"])
    async def test_bad_url_makes_no_request(self, url):
        requests = []
        upstream = UpstreamClient(transport=httpx.MockTransport(lambda r: requests.append(r)))
        with pytest.raises(ClientInputError):
            await convert_remote_style(upstream, url)
        await upstream.aclose()
        assert requests == []

    @pytest.mark.asyncio
    async def test_invalid_json_reports_parse_error(self):
        upstream = UpstreamClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"{oops")))
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await convert_remote_style(upstream, STYLE_URL)
        await upstream.aclose()
        assert exc_info.value.message.startswith("Upstream style is not valid JSON")
        assert "line 1" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_object_json(self):
        upstream = UpstreamClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[1])))
        with pytest.raises(UpstreamUnavailable):
            await convert_remote_style(upstream, STYLE_URL)
        await upstream.aclose()
