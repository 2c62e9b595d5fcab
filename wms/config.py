"""Application configuration."""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = "development"
    database_url: str

    # Redis (for Celery, progress pub/sub and the redis progress backend)
    redis_url: str = "redis://localhost:6379/0"

    # Uploads
    upload_dir: str = "/tmp/wms_uploads"
    max_upload_size_mb: int = 200

    # Ingestion
    ingestion_backend: str = "celery"  # celery, inline
    progress_backend: str = "database"  # database, redis
    publish_progress: bool = True
    job_retention_seconds: int = 3600
    count_missing_key_as_error: bool = False
    existing_lookup_slice: int = 5000

    # Chunk sizes per pipeline
    master_data_chunk_size: int = 3000
    inbound_chunk_size: int = 500
    qc_chunk_size: int = 500
    picking_chunk_size: int = 500

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
