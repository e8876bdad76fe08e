"""Application configuration module."""

from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./examprep.db"
    SQL_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    REPOSITORY_BACKEND: str = "sql"

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    LOG_FILE: str = ""

    # API settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "ExamPrep"

    # Submission / content policy
    ALLOW_MULTIPLE_SUBMISSIONS: bool = True
    CREATOR_EDIT_FAMILIES: List[str] = []

    # Dashboard
    RECENT_ACTIVITY_LIMIT: int = 10
    SCORE_BUCKETS: List[float] = [0, 20, 40, 60, 80, 100]

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("REPOSITORY_BACKEND")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate repository backend"""
        if v.lower() not in ("sql", "memory"):
            raise ValueError(f"Invalid repository backend: {v}. Must be 'sql' or 'memory'")
        return v.lower()

    @field_validator("SCORE_BUCKETS")
    @classmethod
    def validate_buckets(cls, v: List[float]) -> List[float]:
        """Bucket edges must be strictly increasing"""
        if len(v) < 2 or any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("SCORE_BUCKETS must hold at least two strictly increasing edges")
        return v


# Create global settings instance
settings = Settings()
