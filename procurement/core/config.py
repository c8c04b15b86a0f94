"""
Portal settings, read from the environment (and ``.env``).
"""
import warnings
from typing import List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_WEAK_SECRET_KEYS = {"change-me", "changeme", "secret", "procurement-dev-secret"}
_WEAK_DB_PASSWORDS = {"procurement", "postgres", "password", "changeme", ""}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Procurement RFx Portal"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SECRET_KEY: str = "procurement-dev-secret"

    # Database; DATABASE_URL wins over the POSTGRES_* parts
    POSTGRES_USER: str = "procurement"
    POSTGRES_PASSWORD: str = "procurement"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "procurement"
    DATABASE_URL: Optional[str] = None

    # Set to False when Alembic owns the schema
    ENSURE_SCHEMA_ON_STARTUP: bool = True
    DB_PREFLIGHT_RETRIES: int = 5

    # Bearer tokens (issued by the identity service)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Purchase orders
    PO_NUMBER_PREFIX: str = "PO"
    PO_NUMBER_MAX_ATTEMPTS: int = 3
    DEFAULT_CURRENCY: str = "USD"

    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL '{v}'")
        return level

    @field_validator('PO_NUMBER_MAX_ATTEMPTS')
    @classmethod
    def validate_po_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("PO_NUMBER_MAX_ATTEMPTS must be at least 1")
        return v

    @field_validator('DEFAULT_CURRENCY')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("DEFAULT_CURRENCY must be a 3-letter ISO code")
        return code

    @model_validator(mode='after')
    def check_production_settings(self) -> "Settings":
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )
            if self.POSTGRES_PASSWORD in _WEAK_DB_PASSWORDS and not self.DEBUG:
                raise ValueError("POSTGRES_PASSWORD is a default value; set a real password")

        if self.SECRET_KEY in _WEAK_SECRET_KEYS or len(self.SECRET_KEY) < 32:
            if not self.DEBUG:
                raise ValueError(
                    "SECRET_KEY is weak or default. Generate one with: openssl rand -hex 32"
                )
            warnings.warn("SECRET_KEY is weak; set a strong key before deploying", UserWarning)
        return self


settings = Settings()
