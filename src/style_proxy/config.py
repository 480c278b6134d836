"""Application settings loaded from the environment."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_VERSION = "1.0.0"


class Settings(BaseSettings):
    """Proxy configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    # Origin used in rewritten styles. Empty means derive it from the request.
    public_base_url: str = Field(default="")

    # Extra style records on top of the built-in provider table
    providers_file: str | None = Field(default=None)

    # Caches
    style_cache_ttl: int = Field(default=3600)
    style_cache_max_entries: int = Field(default=100)
    tile_cache_ttl: int = Field(default=86400)
    tile_cache_max_entries: int = Field(default=1000)
    sprite_cache_ttl: int = Field(default=3600)
    glyph_cache_ttl: int = Field(default=86400)
    asset_cache_max_entries: int = Field(default=300)

    # Rate limiting, requests per window per client
    style_rate_limit: int = Field(default=100)
    source_rate_limit: int = Field(default=100)
    tile_rate_limit: int = Field(default=500)
    rate_limit_window_seconds: float = Field(default=60.0)
    rate_limit_sweep_probability: float = Field(default=0.01)

    # Upstream timeouts in seconds
    style_fetch_timeout: float = Field(default=30.0)
    tile_fetch_timeout: float = Field(default=10.0)
    convert_fetch_timeout: float = Field(default=30.0)

    max_zoom: int = Field(default=22)

    # Provider secrets. Empty means the provider is called without a key.
    maptiler_api_key: str = Field(default="")
    clockwork_api_key: str = Field(default="")
    bev_api_key: str = Field(default="")
    linz_api_key: str = Field(default="")
    ign_api_key: str = Field(default="")
    osgb_api_key: str = Field(default="")


@lru_cache
def get_settings() -> Settings:
    return Settings()
