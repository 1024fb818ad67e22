"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins over the POSTGRES_* parts when set (tests use sqlite).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="gym_app")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # JWT Authentication - REQUIRED for token validation
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Plan generation service (generates / copies workout plan trees for a gym)
    PLAN_GENERATION_URL: str = Field(default="http://plan-generator:8080/generate")
    PLAN_COPY_URL: str = Field(default="http://plan-generator:8080/copy")
    # The source service has no timeout; a stalled call becomes a deferred plan.
    PLAN_GENERATION_TIMEOUT_S: float = Field(default=45.0, gt=0)

    # Gym photo analysis service (equipment + exercise detection)
    GYM_ANALYSIS_URL: str = Field(default="http://gym-analysis:8080/analyze")
    GYM_ANALYSIS_TIMEOUT_S: float = Field(default=60.0, gt=0)

    # Shared key sent to internal services
    SERVICE_API_KEY: Optional[str] = Field(default=None)

    # Local plan cache (on-device replica of plan trees)
    LOCAL_CACHE_URL: str = Field(default="sqlite:///./local_plan_cache.db")

    # Gym setup wizard
    SETUP_SESSION_TTL_S: int = Field(default=6 * 3600)
    DEFAULT_GYM_EQUIPMENT: List[str] = Field(
        default=[
            "barbell",
            "dumbbells",
            "adjustable_bench",
            "squat_rack",
            "cable_machine",
            "pull_up_bar",
            "leg_press",
        ]
    )
    # Periodic sweep of abandoned setups (seconds between beat runs)
    REAP_SWEEP_INTERVAL_S: int = Field(default=3600)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)


# Global settings instance
settings = Settings()
