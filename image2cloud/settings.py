"""Runtime configuration for the ingestion service.

Values are read from the environment once and passed explicitly to the
pipeline, the staging area and the storage backends. Nothing in the
package reads these variables on its own.

Environment variables:
    STAGING_DIR: Working directory for files mid-pipeline (default '.tmp').
    STORAGE_BACKEND: 'local' (default) or 'gcs'.
    GCS_BUCKET: Name of the Google Cloud Storage bucket to use when
        STORAGE_BACKEND is 'gcs'.
    IMAGE_LIBRARY_DIR: Base directory for the local object store (default
        './image_library').
    METADATA_DB: Path of the SQLite file holding upload records (default
        './uploads.db').
    JWT_SECRET: Shared secret used to validate bearer tokens.
    TOKEN_TTL_SECONDS: Lifetime of issued tokens (default 3600).
    LOG_LEVEL: Root logging level (default 'INFO').
"""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator


class Settings(BaseModel):
    """Service configuration."""

    staging_dir: str = ".tmp"
    storage_backend: str = "local"
    gcs_bucket: str = ""
    image_library_dir: str = "./image_library"
    metadata_db: str = "./uploads.db"
    jwt_secret: str = ""
    token_ttl_seconds: int = 3600
    log_level: str = "INFO"

    @field_validator("storage_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("local", "gcs"):
            raise ValueError(f"Unknown STORAGE_BACKEND '{value}'")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            staging_dir=os.getenv("STAGING_DIR", ".tmp"),
            storage_backend=os.getenv("STORAGE_BACKEND", "local"),
            gcs_bucket=os.getenv("GCS_BUCKET", ""),
            image_library_dir=os.getenv("IMAGE_LIBRARY_DIR", "./image_library"),
            metadata_db=os.getenv("METADATA_DB", "./uploads.db"),
            jwt_secret=os.getenv("JWT_SECRET", ""),
            token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", "3600")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded on first use."""
    return Settings.from_env()
