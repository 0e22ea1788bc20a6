"""Application Settings - Central Configuration"""
from datetime import timedelta
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # MongoDB (remote store)
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "opcore_dev"
    mongo_server_selection_timeout_ms: int = 5000

    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"
    log_to_file: bool = False

    # Membership workflow
    invite_ttl_minutes: int = 60
    join_request_ttl_minutes: int = 60

    # Live location trails
    trail_window_minutes: int = 10

    # Reconciliation batches
    reconcile_max_concurrency: int = 8
    reconcile_timeout_seconds: Optional[float] = None

    # Routing oracle (Google Directions)
    google_maps_api_key: str = ""
    directions_base_url: str = "https://maps.googleapis.com/maps/api/directions/json"
    routing_timeout_seconds: float = 10.0
    arrival_threshold_meters: float = 50.0

    # Realtime chat
    chat_dedup_capacity: int = 500

    # Environment
    environment: str = "development"

    @property
    def invite_ttl(self) -> timedelta:
        """Default lifetime of an operation invite"""
        return timedelta(minutes=self.invite_ttl_minutes)

    @property
    def join_request_ttl(self) -> timedelta:
        """Default lifetime of a join request"""
        return timedelta(minutes=self.join_request_ttl_minutes)

    @property
    def trail_window(self) -> timedelta:
        """How far back location trails are kept"""
        return timedelta(minutes=self.trail_window_minutes)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
