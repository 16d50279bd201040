"""Configuration management for Picvault.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PICVAULT_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PICVAULT_* prefix)
2. .env file in the project root
3. Default values defined in PicvaultConfig

Example .env file:
    PICVAULT_API_BASE_URL=http://localhost:8787
    PICVAULT_PAGE_SIZE=24
    PICVAULT_LIST_STALE_SECONDS=300
    PICVAULT_GALLERY_DIR=data/gallery

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Server-side code (``picvault.api.main``) reads its paths from it; the client
cache controllers only use it for their default page size and staleness
windows, and every one of those defaults can be overridden per instance.

Usage Example
-------------
    from picvault.core.config import config

    print(config.page_size)
    print(config.gallery_dir)

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- data_dir: For ``gallery.json``
- gallery_dir: For stored originals and compressed variants
- static_dir: For static assets (favicons)
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PicvaultConfig(BaseSettings):
    """Main configuration for Picvault.

    Attributes
    ----------
    Client Settings:
        api_base_url : str
            Base URL of the listing API used by the async HTTP client
        request_timeout : float
            Per-request timeout in seconds for the HTTP client
        page_size : int
            Default number of images per listing page
        list_stale_seconds : float
            Seconds a cached listing is considered fresh
        detail_stale_seconds : float
            Seconds a cached image detail is considered fresh

    Compression Settings:
        compression_quality : int
            Default encode quality for WebP/AVIF variants
        compression_max_width : int
            Default bounding width for resized variants
        compression_max_height : int
            Default bounding height for resized variants
        avif_max_dimension : int
            Additional per-axis cap applied to AVIF variants only

    Paths:
        data_dir : Path
            Directory holding ``gallery.json``
        gallery_dir : Path
            Directory holding stored image files
        static_dir : Path
            Directory served at ``/static``

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PICVAULT_",
        case_sensitive=False,
    )

    # Client settings
    api_base_url: str = Field(
        default="http://localhost:8787",
        description="Base URL of the image listing API",
    )
    request_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds",
        gt=0,
    )
    # Upper bound matches the server-side cap in picvault.api.gallery_store.MAX_PAGE_SIZE.
    page_size: int = Field(default=24, ge=1, le=100)
    list_stale_seconds: float = Field(
        default=5 * 60,
        description="Freshness window for cached listing pages",
        ge=0,
    )
    detail_stale_seconds: float = Field(
        default=30 * 60,
        description="Freshness window for cached image details",
        ge=0,
    )

    # Compression defaults
    compression_quality: int = Field(default=90, ge=1, le=100)
    compression_max_width: int = Field(default=3840, ge=1)
    compression_max_height: int = Field(default=3840, ge=1)
    avif_max_dimension: int = Field(
        default=1600,
        description="Per-axis cap for AVIF output (encode cost grows with pixel count)",
        ge=1,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding gallery metadata",
    )
    gallery_dir: Path = Field(
        default=Path("data/gallery"),
        description="Directory holding stored images",
    )
    static_dir: Path = Field(
        default=Path("static"),
        description="Directory for static assets",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=8787,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.gallery_dir.mkdir(parents=True, exist_ok=True)
        self.static_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance
# Loads values from environment variables (PICVAULT_* prefix) and .env file.
config = PicvaultConfig()
