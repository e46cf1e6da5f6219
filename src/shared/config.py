"""
Shared Configuration - Application Settings and Site Configuration
Centralized configuration management for the hosting system service.

This module provides:
- Environment-based settings with validation
- Database and Redis connection settings
- Cache tier, security and logging settings
- Read-only access to the platform's JSON site document
"""
import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ConfigError(Exception):
    """Raised when a required configuration value is missing."""
    pass


class DatabaseSettings(BaseSettings):
    """Option/transient store connection settings."""

    # Primary database URL (takes precedence if set)
    database_url: Optional[str] = None

    # Individual database components (used if DATABASE_URL not set)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "wordpress"
    db_user: str = "wordpress"
    db_password: str = "wordpress_dev_password"

    db_echo: bool = False
    db_pool_size: int = 5

    @field_validator("db_port")
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    def get_database_url(self) -> str:
        """Get the complete database URL."""
        if self.database_url:
            return self.database_url

        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class RedisSettings(BaseSettings):
    """Redis user cache settings. The user cache is disabled when no URL is set."""

    redis_url: Optional[str] = None
    redis_timeout: int = 5

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class CacheSettings(BaseSettings):
    """Cache tier settings."""

    # Cache-tier signalling is fire-and-forget with a hard timeout
    edge_timeout: float = Field(1.0, validation_alias="CACHE_EDGE_TIMEOUT")

    # HTTP cache headers
    headers_enabled: bool = Field(True, validation_alias="CACHE_HEADERS_ENABLED")
    headers_max_age: int = Field(7 * 24 * 3600, validation_alias="CACHE_HEADERS_MAX_AGE")

    # In-process object cache
    object_cache_max_size: int = Field(1000, validation_alias="OBJECT_CACHE_MAX_SIZE")
    object_cache_ttl: int = Field(300, validation_alias="OBJECT_CACHE_TTL")

    # Growl notices queued in a cookie
    growl_max_messages: int = Field(10, validation_alias="GROWL_MAX_MESSAGES")

    @field_validator("edge_timeout")
    @classmethod
    def validate_edge_timeout(cls, v):
        if v <= 0:
            raise ValueError("Edge timeout must be positive")
        return v

    @field_validator("headers_max_age")
    @classmethod
    def validate_max_age(cls, v):
        if v < 0:
            raise ValueError("Max age cannot be negative")
        return v

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )


class SecuritySettings(BaseSettings):
    """Security configuration settings."""

    secret_key: str = "dev-secret-key-change-in-production"
    nonce_lifetime: int = 24 * 3600

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v):
        if len(v) < 32:
            raise ValueError("Secret key must be at least 32 characters long")
        return v

    @field_validator("nonce_lifetime")
    @classmethod
    def validate_nonce_lifetime(cls, v):
        if v < 2:
            raise ValueError("Nonce lifetime must be at least 2 seconds")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class MonitoringSettings(BaseSettings):
    """Logging configuration settings."""

    log_level: LogLevel = LogLevel.INFO
    log_format: str = "colored"
    log_file: Optional[str] = None

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "colored", "standard"):
            raise ValueError("Log format must be one of: json, colored, standard")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class SiteSettings(BaseSettings):
    """Host site settings."""

    site_config_path: str = "/site/private/site.json"
    content_dir: str = "/var/www/html/wp-content"
    rest_prefix: str = "/wp-json"
    cli_rest_timeout: float = 10.0
    version_id: int = Field(0, validation_alias="MWP2_VERSION_ID")

    @field_validator("rest_prefix")
    @classmethod
    def validate_rest_prefix(cls, v):
        return "/" + v.strip("/") if v.strip("/") else ""

    def config_paths(self) -> List[str]:
        """Site document lookup order."""
        return [self.site_config_path, os.path.join(self.content_dir, "config-local.json")]

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )


class Settings(BaseSettings):
    """Main application settings."""

    # Application settings
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    app_name: str = "MWP System"
    app_version: str = "1.0.0"

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    site: SiteSettings = Field(default_factory=SiteSettings)

    @field_validator("debug")
    @classmethod
    def validate_debug_in_production(cls, v, info):
        if info.data.get("environment") == Environment.PRODUCTION and v:
            raise ValueError("Debug mode should not be enabled in production")
        return v

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="allow")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get application settings.
    This function can be used as a FastAPI dependency.
    """
    return settings


# Keys that are never memoized and always re-read from disk
NOCACHE_KEYS = ("db_host", "db_name", "db_password", "db_port", "db_user", "shopper_id", "site_token")


class SiteConfig:
    """
    Read-only accessor for the platform's JSON site document.

    The document supplies identifiers such as ``site_uid``, ``account_uid``,
    ``site_token``, ``default_site_url`` and ``api_url``. Values are memoized
    per instance except for the keys in ``nocache_keys``, which are fetched
    from disk on every access.
    """

    def __init__(
        self,
        paths: Iterable[str],
        nocache_keys: Iterable[str] = NOCACHE_KEYS,
        debug: bool = False
    ):
        self.paths = [Path(p) for p in paths]
        self.nocache_keys = frozenset(nocache_keys)
        self.debug = debug
        self._cached: Optional[Dict[str, Any]] = None

    def path(self) -> Optional[Path]:
        """Return the first readable site document path."""
        for path in self.paths:
            if path.is_file() and os.access(path, os.R_OK):
                return path
        return None

    def fetch(self) -> Dict[str, Any]:
        """Fetch all values from disk (not memoized)."""
        path = self.path()
        if path is None:
            return {}

        try:
            values = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Unable to read site config", path=str(path), error=str(e))
            return {}

        return values if isinstance(values, dict) else {}

    def exists(self, key: str) -> bool:
        """Check if the site document defines a key."""
        return key in self.fetch()

    def get(self, key: str, default: Any = None, force: bool = False) -> Any:
        """Return a site config value."""
        nocache = key in self.nocache_keys

        if self.debug or nocache or force or self._cached is None:
            values = self.fetch()
            if not nocache:
                self._cached = {k: v for k, v in values.items() if k not in self.nocache_keys}
        else:
            values = self._cached

        return values.get(key, default)

    def require(self, key: str) -> Any:
        """Return a site config value or raise ConfigError when it is missing."""
        value = self.get(key)
        if value in (None, ""):
            raise ConfigError(f"Site config key '{key}' is not set")
        return value

    def clear(self) -> None:
        """Drop memoized values."""
        self._cached = None


_site_config: Optional[SiteConfig] = None


def get_site_config() -> SiteConfig:
    """Get the global site config reader."""
    global _site_config
    if _site_config is None:
        _site_config = SiteConfig(settings.site.config_paths(), debug=settings.debug)
    return _site_config
