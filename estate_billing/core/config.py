"""
Estate Billing Application Configuration
Loads settings from .env file using Pydantic v2 with BaseSettings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==================== Project Info ====================
    PROJECT_NAME: str = "Estate Billing API"
    PROJECT_DESCRIPTION: str = "Utility billing, statements and reports for property management staff"
    VERSION: str = "1.0.0"

    # ==================== Database ====================
    # Supabase Postgres in production, SQLite for local development
    DATABASE_URL: str = "sqlite:///estate_billing_local.db"

    # ==================== Supabase Configuration ====================
    # When enabled the billing repository talks to PostgREST instead of SQLAlchemy
    SUPABASE_ENABLED: bool = False
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""

    # ==================== Security & Authentication ====================
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = "authenticated"
    AUTH_REQUIRED: bool = True

    # ==================== CORS ====================
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]

    # ==================== Server Configuration ====================
    # Read by run.py
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ==================== Statement Header ====================
    BUSINESS_NAME: str = "J.K Estate Management Ltd."
    BUSINESS_ADDRESS: str = "000-245 Nairobi Road, Nairobi, Kenya"
    BUSINESS_CONTACT: str = "Phone: +254 798 118 515 | Email: info@estatemgmt.co.ke"
    SYSTEM_NAME: str = "Estate Management System"
    CURRENCY_CODE: str = "KES"
    DATE_FORMAT: str = "%d/%m/%Y"

    # ==================== Utility Billing ====================
    BILLING_REQUEST_TIMEOUT_SECONDS: float = 30.0
    BILLING_SESSION_TTL_MINUTES: int = 60
    BILLING_ALLOW_REGRESSION_OVERRIDE: bool = True

    # ==================== Features ====================
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ==================== Configuration Loading ====================
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",  # Allow extra environment variables
        validate_default=True,
    )

    # ==================== Properties ====================
    @property
    def supabase_configured(self) -> bool:
        """Check if the Supabase client can be created"""
        return bool(self.SUPABASE_URL and self.SUPABASE_KEY)


# ==================== Settings Singleton ====================
@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Create default settings instance
settings = get_settings()


# ==================== Helper Functions ====================
def get_cors_origins() -> List[str]:
    """Get CORS allowed origins"""
    return settings.ALLOWED_ORIGINS

