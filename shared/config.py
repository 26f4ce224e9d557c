"""
Shared configuration management for the Content Gateway.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    version: str = "1.0.0"

    # Security
    api_key: Optional[str] = None
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None
    public_paths: List[str] = Field(default_factory=lambda: ["/health", "/metrics", "/content/featured"])

    # Rate limiting
    rate_limit_max: int = 1000
    rate_limit_window_seconds: int = 60
    trust_forwarded_headers: bool = False

    # Cache TTLs (seconds)
    cache_default_ttl: int = 300
    cache_featured_ttl: int = 600
    cache_search_ttl: int = 300
    cache_stats_ttl: int = 300

    # Content engine
    engine_origin: str = "http://localhost"
    engine_jsonapi_base: str = "/jsonapi"
    engine_wsgi_app: Optional[str] = None
    engine_timeout: float = 10.0
    engine_max_concurrency: int = 4
    engine_failure_threshold: int = 5
    engine_recovery_timeout: float = 30.0

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:8080"])
    frontend_url: Optional[str] = None

    # Site
    site_name: str = "Headless Content Site"
    site_description: str = "A headless content site with a decoupled frontend"
    site_url: str = "http://localhost:3000"
    api_url: str = "http://localhost:3001"

    # Content handlers
    search_default_type: str = "article"
    search_max_limit: int = 50
    featured_article_limit: int = 5
    featured_page_limit: int = 3
    stats_content_types: List[str] = Field(default_factory=lambda: ["article", "page"])

    @property
    def allowed_origins(self) -> List[str]:
        """CORS origins including the configured frontend URL."""
        origins = list(self.cors_origins)
        for extra in (self.frontend_url, self.site_url):
            if extra and extra not in origins:
                origins.append(extra)
        return origins


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = 3001
    host: str = "0.0.0.0"


def get_config(service_name: str, port: Optional[int] = None, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    if port is not None:
        overrides.setdefault("port", port)
    return ServiceConfig(service_name=service_name, **overrides)
