from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Provider
    provider_url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str = "BatchGeocoding/2.0.0"
    country_code: str = "br"
    country_name: str = "Brasil"
    request_timeout: float = 15.0

    # Persistence
    cache_path: Path = Path("geocoding-cache.json")
    cache_backend: Literal["json", "duckdb"] = "json"
    checkpoint_path: Path = Path("geocoding-progress.json")

    # Pipeline defaults (seconds)
    rate_limit_delay: float = 1.0
    batch_size: int = 100
    max_retries: int = 3
    retry_delay: float = 5.0
    batch_pause: float = 2.0
    cache_enabled: bool = True
    resume_from_checkpoint: bool = True

    # Rate governor
    min_delay: float = 0.8
    max_delay: float = 3.0
    increase_step: float = 0.2
    decrease_step: float = 0.1
    high_water: float = 0.10
    low_water: float = 0.02
    adjust_every: int = 50

    # Bounds for runtime config updates
    min_rate_limit_delay: float = 0.5
    min_batch_size: int = 10
    max_batch_size: int = 1000
    min_max_retries: int = 1
    max_max_retries: int = 10

    model_config = SettingsConfigDict(
        env_prefix="GEOCODER_",
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
