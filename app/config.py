"""Process configuration read from environment variables."""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for the DICOMweb bridge."""

    archive_root: Path
    database_url: str
    sort_instances: bool = False
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def load_settings() -> Settings:
    """
    Build settings from the environment.

    Variables:
        ARCHIVE_ROOT: Base archive directory used by the filesystem fallback
        DATABASE_URL: SQLAlchemy URL of the archive catalog database
        DICOMWEB_SORT_INSTANCES: Sort instances by InstanceNumber instead of
            archive traversal order (default: false)
        LOG_LEVEL: Root logging level (default: INFO)
        HOST, PORT: Address the server binds to (default: 127.0.0.1:8000)
    """
    return Settings(
        archive_root=Path(os.getenv("ARCHIVE_ROOT", "/data/xnat/archive")),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./archive.db"),
        sort_instances=os.getenv("DICOMWEB_SORT_INSTANCES", "false").strip().lower()
        in _TRUE_VALUES,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return load_settings()
