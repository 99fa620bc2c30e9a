"""Service configuration using Pydantic settings.

``Settings`` is built once when the app starts and handed to every component
that needs it. It is frozen, so nothing can change it mid-request.
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LIST_SEPARATOR = "|"


def split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(LIST_SEPARATOR) if item.strip())


class Settings(BaseSettings):
    """Environment variables use the ``IMGVAR_`` prefix, e.g. ``IMGVAR_ORIGIN_SECRET``."""

    model_config = SettingsConfigDict(env_prefix="IMGVAR_", env_file=".env", extra="ignore", frozen=True)

    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True

    # Supabase storage; SUPABASE_DISABLED mode keeps everything on local disk
    supabase_url: str | None = None
    supabase_key: str | None = None
    supabase_disabled: bool = False
    storage_local_dir: Path = Path(".local_storage")
    original_bucket: str = "originals"
    derived_bucket: str = "transformed"
    derived_key_prefix: str = ""

    # Shared secret injected by the edge on every forwarded request
    secret_header_name: str = "x-origin-secret-header"
    origin_secret: str | None = None

    max_image_size: int = Field(4_700_000, gt=0, description="Largest payload returned inline, in bytes")
    cache_control: str = "max-age=31622400"
    redirect_cache_control: str = "private,no-store"

    fetch_timeout: float | None = 10.0
    transform_timeout: float | None = 30.0
    store_timeout: float | None = 10.0

    # Pipe-separated lists, e.g. "original|w=360,h=270|w=1280" and "original|jpeg|webp"
    precompute_sizes: str = "original"
    precompute_formats: str = "original"
    precompute_workers: int = Field(4, ge=1)
    staging_prefix: str = ""

    # Empty means any size is allowed
    allowed_widths: str = ""
    allowed_heights: str = ""
    supported_extensions: str = ".jpg|.jpeg|.png|.webp|.avif|.gif"

    lookup_derived: bool = False
    edge_normalizer_enabled: bool = False

    @property
    def precompute_size_list(self) -> tuple[str, ...]:
        return split_list(self.precompute_sizes)

    @property
    def precompute_format_list(self) -> tuple[str, ...]:
        return split_list(self.precompute_formats)

    @property
    def allowed_width_set(self) -> frozenset[int]:
        return frozenset(int(v) for v in split_list(self.allowed_widths))

    @property
    def allowed_height_set(self) -> frozenset[int]:
        return frozenset(int(v) for v in split_list(self.allowed_heights))

    @property
    def supported_extension_list(self) -> tuple[str, ...]:
        return tuple(ext.lower() for ext in split_list(self.supported_extensions))

    @property
    def storage_enabled(self) -> bool:
        return not self.supabase_disabled and bool(self.supabase_url and self.supabase_key)
