"""
Application configuration management
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "StayNest"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False  # Default to production-safe
    SECRET_KEY: str  # Must be provided via environment
    API_PREFIX: str = "/api/v1"
    SITE_URL: str = "http://localhost:3000"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if not v or v == "your-secret-key-change-this-in-production":
            raise ValueError("SECRET_KEY must be set to a secure value in production")
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str  # Must be provided via environment

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if v.startswith('postgresql://'):
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # JWT
    JWT_SECRET_KEY: str  # Must be provided via environment
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Payment gateway (PhonePe pay-page API)
    PHONEPE_MERCHANT_ID: str = ""
    PHONEPE_SALT_KEY: str = ""
    PHONEPE_KEY_INDEX: str = "1"
    PHONEPE_BASE_URL: str = "https://api-preprod.phonepe.com/apis/pg-sandbox"
    PHONEPE_TIMEOUT_SECONDS: float = 15.0
    PHONEPE_CALLBACK_URL: Optional[str] = None

    # Payment reconciliation
    PAYMENT_CALLBACK_CONTEXT_PATH: str = "/pg/v1/status"
    PAYMENT_SIGNATURE_BYPASS: bool = False
    PAYMENT_LOCK_BACKEND: str = "redis"
    PAYMENT_LOCK_TTL_SECONDS: int = 30
    PAYMENT_LOCK_WAIT_SECONDS: float = 5.0
    PAYMENT_DUE_DAY: int = 5
    PAYMENT_CURRENCY: str = "INR"

    @field_validator("PAYMENT_LOCK_BACKEND")
    @classmethod
    def validate_lock_backend(cls, v: str) -> str:
        if v not in ("redis", "local"):
            raise ValueError("PAYMENT_LOCK_BACKEND must be 'redis' or 'local'")
        return v

    @field_validator("PAYMENT_DUE_DAY")
    @classmethod
    def validate_due_day(cls, v: int) -> int:
        if not 1 <= v <= 28:
            raise ValueError("PAYMENT_DUE_DAY must fall within every month (1-28)")
        return v

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080", "http://localhost:5173"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # Monitoring
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @field_validator("CORS_ORIGINS", mode="before")
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @model_validator(mode="after")
    def forbid_signature_bypass_in_production(self):
        if self.PAYMENT_SIGNATURE_BYPASS and self.APP_ENV not in ("development", "testing"):
            raise ValueError(
                "PAYMENT_SIGNATURE_BYPASS is only allowed when APP_ENV is development or testing"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"

    @property
    def phonepe_configured(self) -> bool:
        return bool(self.PHONEPE_MERCHANT_ID and self.PHONEPE_SALT_KEY)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Create global settings instance
settings = Settings()
