"""
Stockflow Configuration
Core settings for the inventory movement engine
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Info
    APP_NAME: str = "Stockflow Inventory Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Storage
    STORAGE_BACKEND: str = "memory"  # memory | sql
    DATABASE_URL: str = "sqlite:///./stockflow.db"
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # CORS
    CORS_ORIGINS: list = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Ledger concurrency
    LEDGER_LOCK_TIMEOUT: float = 2.0  # seconds before LedgerBusy
    DOCUMENT_LOCK_TIMEOUT: float = 5.0
    LEDGER_RETRY_BUDGET: int = 3
    LEDGER_RETRY_BACKOFF: float = 0.05
    LEDGER_RETRY_MAX_BACKOFF: float = 1.0

    # Quantity precision
    QUANTITY_DECIMAL_PLACES: int = 3

    # Document numbering, e.g. GR-202410-001
    DOC_NO_PATTERN: str = "{doc_type}-{period}-{seq:03d}"

    # Lots expiring within this many days are flagged
    NEAR_EXPIRY_DAYS: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: Path = Path("logs")
    LOG_FILE: str = "stockflow.log"
    ERROR_LOG_FILE: str = "error.log"

    # API Configuration
    API_V1_STR: str = "/api/v1"
    DOCS_URL: str = "/docs"
    OPENAPI_URL: str = "/openapi.json"

    @field_validator("STORAGE_BACKEND", mode="before")
    @classmethod
    def normalise_backend(cls, v: Optional[str]) -> str:
        """Accept memory/sql in any case"""
        value = (v or "memory").strip().lower()
        if value not in ("memory", "sql"):
            raise ValueError(f"Unknown storage backend: {v}")
        return value

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        return str(v).upper()

    @field_validator("LEDGER_RETRY_BUDGET")
    @classmethod
    def non_negative_budget(cls, v: int) -> int:
        if v < 0:
            raise ValueError("LEDGER_RETRY_BUDGET must be >= 0")
        return v


# Global settings instance
settings = Settings()
