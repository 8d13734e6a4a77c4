"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str

    # Redis (empty string disables exam content caching)
    REDIS_URL: str = "redis://redis:6379/0"

    # Application
    APP_NAME: str = "Timed Exam Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Exam Settings
    EXAM_CONTENT_CACHE_TTL: int = 600  # 10 minutes
    FINALIZE_GRACE_SECONDS: int = 30
    PASSING_SCORE: float = 51.0

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
