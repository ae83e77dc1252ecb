"""
Application configuration (pydantic-settings v2).

Processor credentials live in core.settings so they can be rotated
independently of the app/database settings.
"""
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./payments.db"
    echo: bool = False


class Settings(BaseSettings):
    """Project settings"""

    PROJECT_NAME: str = Field(default="Card Payment Ledger")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")

    # Grouped settings: DATABASE__URL, DATABASE__ECHO
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    # Create missing tables on startup; disable when the schema is managed externally
    AUTO_CREATE_TABLES: bool = Field(default=True)

    API_PREFIX: str = Field(default="/api/v1")
    LOG_LEVEL: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


settings = Settings()
