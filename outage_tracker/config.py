"""Run configuration.

Settings come from the environment (prefix OUTAGE_TRACKER_) and an optional
.env file; command-line flags override them.
"""

from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ingestion settings."""

    model_config = SettingsConfigDict(
        env_prefix="OUTAGE_TRACKER_",
        env_file=".env",
        extra="ignore",
    )

    database_file: str = "outages.db"
    repo_remote: Optional[str] = "https://github.com/danp/nspoweroutages.git"
    repo_path: Optional[str] = None         # Preferred over repo_remote when set
    tracked_path: str = "data/outages.json"
    places_file: Optional[str] = None       # GeoJSON FeatureCollection of places
    place_cache_size: Optional[int] = None  # None keeps every looked-up point
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _normalize(self) -> "Settings":
        self.repo_remote = self.repo_remote or None
        self.repo_path = self.repo_path or None
        self.places_file = self.places_file or None
        self.log_level = self.log_level.upper()
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()
