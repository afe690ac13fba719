"""Configuration settings for the Mind Maps API."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    MAX_BODY_SIZE_MB: int = int(os.getenv("MAX_BODY_SIZE_MB", "10"))

    # Database (empty string disables it and keeps every operation in memory)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./mindmaps.db")

    # JWT
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", "30"))
    SESSION_IDLE_MINUTES: int = int(os.getenv("SESSION_IDLE_MINUTES", "30"))

    # Passwords and lockout
    BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    MAX_LOGIN_ATTEMPTS: int = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
    LOCK_DURATION_MINUTES: int = int(os.getenv("LOCK_DURATION_MINUTES", "120"))
    PASSWORD_RESET_EXPIRE_MINUTES: int = int(os.getenv("PASSWORD_RESET_EXPIRE_MINUTES", "30"))

    # Two-factor
    TWO_FACTOR_ISSUER: str = os.getenv("TWO_FACTOR_ISSUER", "MindMaps App")
    TWO_FACTOR_VALID_WINDOW: int = int(os.getenv("TWO_FACTOR_VALID_WINDOW", "2"))
    TWO_FACTOR_SETUP_TTL_MINUTES: int = int(os.getenv("TWO_FACTOR_SETUP_TTL_MINUTES", "10"))

    # Rate limits (login and API defaults depend on APP_ENV, see __init__)
    REGISTER_RATE_LIMIT: str = os.getenv("REGISTER_RATE_LIMIT", "3/hour")
    LOGIN_RATE_LIMIT: str
    API_RATE_LIMIT: str
    PASSWORD_RESET_RATE_LIMIT: str = os.getenv("PASSWORD_RESET_RATE_LIMIT", "3/hour")

    def __init__(self) -> None:
        if not self.JWT_SECRET_KEY:
            self.JWT_SECRET_KEY = secrets.token_urlsafe(32)
            self._generated_secret = True
        else:
            self._generated_secret = False

        relaxed = "1000 per 15 minutes"
        self.LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "5 per 15 minutes" if self.is_production else relaxed)
        self.API_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "100 per 15 minutes" if self.is_production else relaxed)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        warnings = []
        if self._generated_secret:
            warnings.append("JWT_SECRET_KEY is not set - using auto-generated key (not persistent across restarts)")
        if not self.DATABASE_URL:
            warnings.append("DATABASE_URL is empty - users are kept in memory only")
        if self.is_production and "*" in self.CORS_ORIGINS:
            warnings.append("CORS_ORIGINS allows any origin in production")
        return warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
