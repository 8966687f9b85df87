"""
Shared configuration management for the Broker ACL service.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACL_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment")
    log_level: str = Field(default="info", description="Root log level")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0", description="Identity cache")
    postgres_dsn: str = Field(default="postgres://localhost:5432/vernemq_db", description="ACL store")
    verification_url: str = Field(default="http://localhost:8010/auth/verify", description="Identity verification endpoint")
    verification_timeout: float = Field(default=5.0, description="Verification request timeout in seconds")

    # Credentials
    token_format_pattern: str = Field(default=r"^[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.?[A-Za-z0-9\-_.+/=]*$")
    token_cache_ttl_seconds: int = Field(default=3600, ge=1)

    # Broker topic layout
    group_topic_prefix: str = Field(default="groups")
    private_topic_prefix: str = Field(default="private")
    vmq_mountpoint: str = Field(default="")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
