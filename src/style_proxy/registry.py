"""Registry of proxied styles and the configuration stores that feed it.

Each style id maps to the upstream style document, the provider whose
credential it needs, and the upstream tile template for each source.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from style_proxy.credentials import Provider
from style_proxy.errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "default"

# Built-in provider table. URLs are stored clean; keys are injected per request.
BUILTIN_STYLES: dict[str, dict[str, Any]] = {
    "maptiler-streets-v2": {
        "name": "MapTiler Streets v2",
        "upstreamURL": "https://api.maptiler.com/maps/streets-v2/style.json",
        "provider": "maptiler",
        "tileTemplates": {
            "maptiler_planet": "https://api.maptiler.com/tiles/v3/{z}/{x}/{y}.pbf",
            "default": "https://api.maptiler.com/tiles/v3/{z}/{x}/{y}.pbf",
        },
    },
    "maptiler-landscape": {
        "name": "MapTiler Landscape",
        "upstreamURL": "https://api.maptiler.com/maps/landscape/style.json",
        "provider": "maptiler",
        "tileTemplates": {"default": "https://api.maptiler.com/tiles/v3/{z}/{x}/{y}.pbf"},
    },
    "maptiler-ocean": {
        "name": "MapTiler Ocean",
        "upstreamURL": "https://api.maptiler.com/maps/ocean/style.json",
        "provider": "maptiler",
        "tileTemplates": {"default": "https://api.maptiler.com/tiles/ocean/{z}/{x}/{y}.pbf"},
    },
    "maptiler-outdoor-v2": {
        "name": "MapTiler Outdoor v2",
        "upstreamURL": "https://api.maptiler.com/maps/outdoor-v2/style.json",
        "provider": "maptiler",
        "tileTemplates": {"default": "https://api.maptiler.com/tiles/v3/{z}/{x}/{y}.pbf"},
    },
    "maptiler-dataviz": {
        "name": "MapTiler Dataviz",
        "upstreamURL": "https://api.maptiler.com/maps/dataviz/style.json",
        "provider": "maptiler",
        "tileTemplates": {"default": "https://api.maptiler.com/tiles/dataviz/{z}/{x}/{y}.pbf"},
    },
    "clockwork-streets": {
        "name": "Clockwork Streets",
        "upstreamURL": "https://maps.clockworkmicro.com/streets/v1/style",
        "provider": "clockwork",
        "tileTemplates": {"default": "https://maps.clockworkmicro.com/streets/v1/{z}/{x}/{y}.pbf"},
    },
    "bev-kataster": {
        "name": "BEV Kataster",
        "upstreamURL": "https://kataster.bev.gv.at/styles/kataster/style.json",
        "provider": "bev",
        "tileTemplates": {"default": "https://kataster.bev.gv.at/tiles/{z}/{x}/{y}.pbf"},
    },
    "bev-kataster-light": {
        "name": "BEV Kataster Light",
        "upstreamURL": "https://kataster.bev.gv.at/styles/kataster-light/style.json",
        "provider": "bev",
        "tileTemplates": {"default": "https://kataster.bev.gv.at/tiles/{z}/{x}/{y}.pbf"},
    },
    "basemap-de-global": {
        "name": "Basemap.de Global",
        "upstreamURL": "https://sgx.geodatenzentrum.de/gdz_basemapworld_vektor/styles/bm_web_wld_col.json",
        "provider": "basemap.de",
        "tileTemplates": {
            "default": "https://sgx.geodatenzentrum.de/gdz_basemapworld_vektor/tiles/{z}/{x}/{y}.pbf"
        },
    },
    "nz-basemap-topographic": {
        "name": "LINZ Topographic",
        "upstreamURL": "https://basemaps.linz.govt.nz/v1/tiles/topographic/EPSG:3857/style/topographic.json",
        "provider": "linz",
        "tileTemplates": {
            "default": "https://basemaps.linz.govt.nz/v1/tiles/topographic/WebMercatorQuad/{z}/{x}/{y}.pbf"
        },
    },
    "ign-plan": {
        "name": "IGN Plan",
        "upstreamURL": "https://data.geopf.fr/annexes/ressources/vectorTiles/styles/PLAN.IGN/standard.json",
        "provider": "ign",
        "tileTemplates": {
            "default": "https://data.geopf.fr/tms/1.0.0/PLAN.IGN/{z}/{x}/{y}.pbf"
        },
    },
    "os-outdoor": {
        "name": "OS Outdoor",
        "upstreamURL": "https://api.os.uk/maps/vector/v1/vts/resources/styles?srs=3857",
        "provider": "osgb",
        "tileTemplates": {
            "default": "https://api.os.uk/maps/vector/v1/vts/tile/{z}/{y}/{x}.pbf?srs=3857"
        },
    },
}


class StyleRecord(BaseModel):
    """A configuration-store record as stored in JSON."""

    model_config = ConfigDict(populate_by_name=True)

    upstream_url: str = Field(alias="upstreamURL")
    provider: Provider
    tile_templates: dict[str, str] = Field(default_factory=dict, alias="tileTemplates")
    name: str | None = None
    asset_hosts: list[str] = Field(default_factory=list, alias="assetHosts")


@dataclass(frozen=True)
class StyleDescriptor:
    """Immutable description of one proxied style."""

    style_id: str
    upstream_url: str
    provider: Provider
    tile_templates: dict[str, str] = field(default_factory=dict)
    name: str | None = None
    asset_hosts: tuple[str, ...] = ()

    @classmethod
    def from_record(cls, style_id: str, record: StyleRecord) -> "StyleDescriptor":
        return cls(
            style_id=style_id,
            upstream_url=record.upstream_url,
            provider=record.provider,
            tile_templates=dict(record.tile_templates),
            name=record.name,
            asset_hosts=tuple(record.asset_hosts),
        )

    def known_hosts(self) -> set[str]:
        """Hosts the second-stage asset proxies may fetch from for this style."""
        hosts = {urlsplit(self.upstream_url).hostname}
        hosts.update(urlsplit(t).hostname for t in self.tile_templates.values())
        hosts.update(h.lower() for h in self.asset_hosts)
        hosts.discard(None)
        return hosts


class ConfigStore(Protocol):
    """Configuration-record lookup the registry is populated from."""

    def get_by_id(self, style_id: str) -> dict[str, Any] | None: ...

    def ids(self) -> list[str]: ...


class StaticConfigStore:
    """In-memory configuration store."""

    def __init__(self, records: dict[str, dict[str, Any]]):
        self._records = dict(records)

    def get_by_id(self, style_id: str) -> dict[str, Any] | None:
        return self._records.get(style_id)

    def ids(self) -> list[str]:
        return list(self._records)


class JsonFileConfigStore:
    """Configuration store backed by one JSON object keyed by style id."""

    def __init__(self, path: Path):
        self.path = path
        self._records: dict[str, dict[str, Any]] = json.loads(path.read_text())
        if not isinstance(self._records, dict):
            raise ValueError(f"{path} must contain a JSON object keyed by style id")

    def get_by_id(self, style_id: str) -> dict[str, Any] | None:
        return self._records.get(style_id)

    def ids(self) -> list[str]:
        return list(self._records)


class ProviderRegistry:
    """Pure lookup from style id to its upstream definition."""

    def __init__(self, descriptors: dict[str, StyleDescriptor]):
        self._descriptors = dict(descriptors)

    @classmethod
    def from_store(cls, *stores: ConfigStore) -> "ProviderRegistry":
        """Build a registry from one or more stores; later stores win on id clashes.

        Raises:
            ValueError: A record is malformed or names an unknown provider
        """
        descriptors: dict[str, StyleDescriptor] = {}
        for store in stores:
            for style_id in store.ids():
                raw = store.get_by_id(style_id)
                if raw is None:
                    continue
                try:
                    record = StyleRecord.model_validate(raw)
                except ValidationError as e:
                    raise ValueError(f"Invalid style record '{style_id}': {e}") from e
                descriptors[style_id] = StyleDescriptor.from_record(style_id, record)
        logger.info("Registered %d styles", len(descriptors))
        return cls(descriptors)

    @property
    def style_ids(self) -> list[str]:
        return sorted(self._descriptors)

    def descriptors(self) -> list[StyleDescriptor]:
        return [self._descriptors[style_id] for style_id in self.style_ids]

    def resolve(self, style_id: str) -> StyleDescriptor:
        descriptor = self._descriptors.get(style_id)
        if descriptor is None:
            raise NotFound(f"Style '{style_id}' not found", available=self.style_ids)
        return descriptor

    def tile_template(self, style_id: str, source_id: str) -> str:
        """Upstream tile template for a source, falling back to the style's default."""
        descriptor = self.resolve(style_id)
        template = descriptor.tile_templates.get(source_id) or descriptor.tile_templates.get(DEFAULT_SOURCE)
        if template is None:
            raise NotFound(
                f"Source '{source_id}' not found in style '{style_id}'",
                available=sorted(descriptor.tile_templates),
            )
        return template
