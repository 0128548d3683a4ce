"""
Application settings
Read from environment variables / .env file
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Basic
    APP_NAME: str = "Navmenu"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./navmenu.db"

    # JWT
    SECRET_KEY: str = "navmenu-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480

    # Seeded administrator (skipped when either is empty)
    ADMIN_USERNAME: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None

    # Menu structure
    DEFAULT_MAX_DEPTH: int = 2
    MAX_DEPTH_LIMIT: int = 10

    # Resource types (YAML file); built-in defaults are used when unset
    RESOURCE_CONFIG_PATH: Optional[str] = None

    # Public API
    RESOLUTION_TIMEOUT_MS: int = 2000
    RATE_LIMIT_PER_MINUTE: int = 60

    # Query performance monitoring
    QUERY_MONITORING_ENABLED: bool = False
    SLOW_QUERY_THRESHOLD_MS: float = 100.0
    PERFORMANCE_HEADERS: bool = False
    PERFORMANCE_LOG_THRESHOLD_MS: float = 1000.0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# Global settings instance
settings = Settings()
