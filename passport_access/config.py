import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL", "sqlite:///./passport_access.db")

    JWT_SECRET: Optional[str] = os.getenv("JWT_SECRET")
    SESSION_SECRET: Optional[str] = os.getenv("SESSION_SECRET")
    JWT_ALGORITHM: str = "HS256"

    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")

    EMAIL_PROVIDER: str = os.getenv("EMAIL_PROVIDER", "log")
    EMAIL_SENDER: str = os.getenv("EMAIL_SENDER", "no-reply@patient-passport.local")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    CORS_ORIGINS: list = ["http://localhost:3000", "http://127.0.0.1:3000"]

    ENVIRONMENT: str = "production"

    # Consent requests
    CONSENT_DEFAULT_EXPIRY_HOURS: int = 24
    CONSENT_EMERGENCY_EXPIRY_HOURS: int = 2
    CONSENT_MAX_EXPIRY_HOURS: int = 168

    # One-time codes
    OTP_TTL_MINUTES: int = 10
    OTP_ACCESS_GRANT_MINUTES: int = 60
    OTP_DELIVERY_WAIT_SECONDS: float = 5.0
    OTP_MAX_ATTEMPTS: int = 3
    # Return the code in the request-otp response; local testing only
    OTP_ECHO_IN_RESPONSE: bool = False

    # Break-glass and synced observations
    EMERGENCY_ACCESS_WINDOW_HOURS: int = 2
    OBSERVATION_EDIT_WINDOW_HOURS: int = 3
    MEDICATION_ACTIVE_HOURS: int = 2

    URGENT_NOTIFICATION_TTL_HOURS: int = 2
    NOTIFICATION_WORKERS: int = 5

    def validate_database_url(self):
        if not self.DATABASE_URL:
            raise ValueError(
                "DATABASE_URL environment variable is required for database operations. "
                "Please set it to a SQLAlchemy connection string."
            )

    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    def jwt_secret(self) -> str:
        return self.JWT_SECRET or self.SESSION_SECRET or "dev-secret-key-for-testing"

    class Config:
        env_file = ".env"


settings = Settings()
