"""
SQL Sentinel - Configuration
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "SQL Sentinel"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Metadata database (users' grants, role permissions, connection configs)
    DATABASE_URL: str = "sqlite:///./data/sentinel.db"

    # Credential encryption
    ENCRYPTION_KEY: Optional[str] = None
    ENCRYPTION_KEY_FILE: str = "./data/encryption.key"

    # Target database pools
    POOL_MIN_SIZE: int = 1
    POOL_MAX_SIZE: int = 5
    POOL_ACQUIRE_TIMEOUT_SECONDS: int = 30
    CONNECT_TIMEOUT_SECONDS: int = 10

    # Query execution
    QUERY_TIMEOUT_SECONDS: int = 60
    DEFAULT_MAX_ROWS: int = 1000

    # CORS
    CORS_ORIGINS: list = ["http://localhost:5173", "http://localhost:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
