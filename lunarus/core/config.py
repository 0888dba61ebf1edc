"""
Core configuration module using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./lunarus.db"

    # Security Configuration
    jwt_secret: str = "devjwtsecret"
    jwt_algorithm: str = "HS256"
    token_expiry_days: int = 7

    # Default guild and channel (single-server deployments land here)
    default_server_id: str = "lunarus"
    default_channel_id: str = "general"

    # Message history
    history_default_limit: int = 50
    history_max_limit: int = 100

    # Gateway
    gateway_send_queue_size: int = 256

    # Uploads
    uploads_dir: str = "./uploads"
    public_base_url: str = ""

    # Tenor GIF search
    tenor_api_key: Optional[str] = None
    tenor_client_key: str = "lunarus"
    tenor_default_limit: int = 16
    tenor_max_limit: int = 50
    tenor_base_url: str = "https://tenor.googleapis.com/v2/search"

    # LiveKit voice rooms
    livekit_url: str = "http://localhost:7880"
    livekit_public_url: Optional[str] = None
    livekit_api_key: str = "devkey"
    livekit_api_secret: str = "devsecret"
    livekit_token_ttl_hours: int = 6

    # Application Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
