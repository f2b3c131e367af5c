"""Configuration settings for Content Autopilot."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Persistence
    database_path: str = "autopilot.db"

    # Schedule triggers are evaluated against this local timezone
    timezone: str = "America/New_York"

    # Timeouts (seconds)
    feed_timeout_seconds: float = 15.0
    generation_timeout_seconds: float = 120.0
    image_timeout_seconds: float = 90.0
    publish_timeout_seconds: float = 60.0
    research_timeout_seconds: float = 60.0
    run_timeout_seconds: float = 300.0

    # Run lifecycle
    stale_run_after_seconds: int = 900
    lease_ttl_seconds: int = 600
    max_concurrency: int = 1

    # Feed acquisition
    feed_max_media: int = 8
    artifact_max_media: int = 4

    # Periodic processing
    scheduler_enabled: bool = False
    scheduler_interval_seconds: int = 300
    scheduler_alert_user_id: Optional[str] = None

    # Collaborator services
    content_service_url: Optional[str] = None
    image_service_url: Optional[str] = None
    publish_service_url: Optional[str] = None
    service_api_key: Optional[str] = None

    # Model configuration
    default_content_model: str = "gemini-2.5-flash"

    # Content types that get web research before generation
    research_content_types: list[str] = [
        "newsletter",
        "blog_post",
        "x_article",
        "report",
    ]

    # API Server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    class Config:
        env_prefix = "AUTOPILOT_"
        env_file = ".env"


settings = Settings()
