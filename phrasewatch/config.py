"""Application configuration using pydantic-settings for 12-factor app compliance."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings with environment variable support (``PHRASEWATCH_`` prefix)."""

    model_config = SettingsConfigDict(
        env_prefix="PHRASEWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Network Configuration
    connect_timeout: float = Field(
        default=30.0, description="TCP connection establishment timeout (seconds)"
    )
    keep_alive: float = Field(
        default=30.0, description="TCP keep-alive probe interval (seconds)"
    )
    tls_handshake_timeout: float = Field(
        default=10.0, description="TLS handshake timeout (seconds)"
    )
    max_conns_per_host: int = Field(
        default=8, description="Concurrent connections allowed to a single host"
    )
    http2: bool = Field(default=True)
    user_agent: str = Field(default="phrasewatch/0.1")

    # Content scanning
    rules_path: str | None = Field(
        default=None, description="YAML file with the phrase rule table"
    )
    scorer_config_path: str | None = Field(
        default=None, description="YAML file with per-rule scoring weights"
    )

    @field_validator("max_conns_per_host")
    @classmethod
    def validate_max_conns(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_conns_per_host must be at least 1")
        return v


# Read-only settings instance
settings = Settings()
