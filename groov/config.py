"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Waveform
    resolution: int = 12288

    # Cache
    cache_dir: str = ".cache"
    cache_version: int = 3
    cache_map_size: int = 1024 * 1024 * 1024
    payload_cache_limit: int = 8

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    max_upload_mb: int = 200

    model_config = {"env_prefix": "GROOV_"}


settings = Settings()
