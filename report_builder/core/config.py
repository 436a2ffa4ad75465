"""Engine configuration using pydantic settings."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Report builder settings."""

    # Project info
    PROJECT_NAME: str = "Report Template Builder"
    VERSION: str = "0.1.0"

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Autosave
    AUTOSAVE_ENABLED: bool = True
    AUTOSAVE_DEBOUNCE_SECONDS: float = Field(default=2.0, gt=0)  # Inactivity window before a save fires

    # Preview
    PREVIEW_ROW_LIMIT: int = Field(default=100, ge=1, le=10000)

    # Template rules
    TEMPLATE_NAME_MAX_LENGTH: int = Field(default=100, ge=1)
    DEFAULT_VISUALIZATION_TYPE: str = "table"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables not defined in Settings
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return level

    @field_validator("DEFAULT_VISUALIZATION_TYPE")
    @classmethod
    def _check_visualization_type(cls, value: str) -> str:
        if value not in {"table", "bar", "line", "pie", "metric"}:
            raise ValueError(f"Unsupported visualization type: {value}")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


# Create global settings instance
settings = get_settings()
