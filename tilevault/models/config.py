"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TILES_BASE_URL = "https://tiles.jpg-cvl-dev.fr/tiles/"
DEFAULT_TILE_PATTERN = r"\.pmtiles$"


class TileVaultConfig(BaseModel):
    """A validated configuration model for the application."""

    # Storage
    data_dir: str
    store_quota_mb: int = 0

    # Region catalogue
    regions_source: str = "regions.json"
    tiles_base_url: str = DEFAULT_TILES_BASE_URL

    # Interception
    tile_pattern: str = DEFAULT_TILE_PATTERN
    listen_host: str = "127.0.0.1"
    listen_port: int = 8765

    # Transfers
    chunk_size_kb: int = 256
    connect_timeout: float = 30.0
    streaming: bool = True

    # Logging
    json_log: bool = False

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    @field_validator("tile_pattern")
    @classmethod
    def validate_tile_pattern(cls, v: str) -> str:
        """Ensures the tile-resource predicate is a usable regular expression."""
        if not v:
            raise ValueError("Tile pattern cannot be empty.")
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Tile pattern is not a valid regex: {e}") from e
        return v

    @field_validator("listen_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError("Listen port must be between 1 and 65535.")
        return v

    @field_validator("chunk_size_kb")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Keeps the streaming chunk size within sane bounds."""
        if v < 16 or v > 4096:
            raise ValueError("Chunk size must be between 16 and 4096 KB.")
        return v

    @field_validator("connect_timeout")
    @classmethod
    def validate_connect_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Connect timeout must be positive.")
        return v

    @field_validator("store_quota_mb")
    @classmethod
    def validate_quota(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Store quota cannot be negative (use 0 for unlimited).")
        return v

    @field_validator("tiles_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Requires an absolute http(s) base URL for relative region sources."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Tiles base URL must be absolute http(s), got: {v}")
        return v if v.endswith("/") else v + "/"

    @property
    def chunk_size(self) -> int:
        return self.chunk_size_kb * 1024

    @property
    def store_quota_bytes(self) -> int:
        return self.store_quota_mb * 1024 * 1024

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
