"""
Shared configuration management for the ReBAC authorization service.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    rebac_service_url: str = Field(default="http://localhost:8013")

    # Authorization engine
    authz_policies: Optional[str] = Field(
        default=None,
        description="Import path of the Policies mapping, as 'package.module:attribute'",
    )
    authz_cache_enabled: bool = Field(default=True)
    authz_cache_backend: Literal["memory", "redis"] = Field(default="memory")
    authz_cache_ttl_seconds: int = Field(default=300, ge=1)
    authz_cache_sweep_seconds: float = Field(default=60.0, gt=0)
    authz_max_condition_depth: int = Field(default=32, ge=1)


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
