"""
Application settings and configuration management.
"""
from decimal import Decimal
from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./retouch.db"
    database_echo: bool = False

    # JWT verification (tokens are issued by the auth collaborator)
    jwt_secret: str
    jwt_algorithm: str = "HS256"

    # Application Settings
    environment: str = "development"
    app_version: str = "1.0.0"
    release_version: str = "v1.0.0"

    # CORS Settings
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    log_level: str = "INFO"

    # Monitoring & Observability
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.1
    enable_metrics: bool = True
    enable_docs: bool = True

    # Rate Limiting
    enable_rate_limiting: bool = True
    rate_limit_storage_uri: str = "memory://"
    upload_intent_rate_limit: str = "30/minute"

    # Quota & pricing
    max_images_per_request: int = 500
    pay_per_image_unit_price: Decimal = Decimal("2.50")
    default_currency: str = "USD"
    order_number_prefix: str = "ORD"

    @field_validator("log_level")
    def validate_log_level(cls, v):
        """Normalise log level names."""
        return v.upper()

    @field_validator("pay_per_image_unit_price")
    def validate_unit_price(cls, v):
        """Unit price must be positive."""
        if v <= 0:
            raise ValueError("pay_per_image_unit_price must be positive")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """Comma-separated origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    def validate_production_config(self) -> List[str]:
        """Validate production configuration and return list of issues."""
        issues = []

        if self.is_production:
            if self.enable_docs:
                issues.append("API documentation should be disabled in production")

            if self.database_url.startswith("sqlite"):
                issues.append("SQLite should not be used in production")

            if any("localhost" in origin for origin in self.cors_origins):
                issues.append("Localhost origins should be removed in production")

            if len(self.jwt_secret) < 32:
                issues.append("JWT secret should be at least 32 characters long")

            if not self.enable_rate_limiting:
                issues.append("Rate limiting should be enabled in production")

        return issues

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
