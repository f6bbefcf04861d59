from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # API Settings
    app_name: str = "billing-service"
    api_version: str = "v1"
    debug: bool = False

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "billing"
    db_use_nullpool: bool = (
        False  # True for workers (sequential), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis (rate limiter storage in deployed environments)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @property
    def redis_connection_url(self) -> str:
        """Construct Redis URL from components."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def rate_limit_storage_uri(self) -> str:
        """In-memory limits locally, Redis-backed everywhere else."""
        if self.environment == Environment.LOCAL:
            return "memory://"
        return self.redis_connection_url

    # OpenTelemetry
    otel_service_name: str = "billing-service"
    otel_service_version: str = "0.1.0"

    # Axiom (exporters are only attached when a token is configured)
    axiom_token: str = ""
    axiom_dataset: str = ""

    # Firebase Auth (identity is issued externally, we only verify ID tokens)
    firebase_project_id: Optional[str] = None
    google_application_credentials: Optional[str] = None

    # Billing - Stripe (payment gateway adapter)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Shared secret for /internal routes (unchecked when empty)
    internal_api_token: str = ""

    # Billing - engine knobs
    free_tier_name: str = "free"
    scheduler_batch_size: int = 500
    scheduler_interval_seconds: int = 86400  # daily
    referral_code_length: int = 8

    @property
    def cors_allowed_origins(self) -> List[str]:
        """Auto-select CORS origins based on environment."""
        if self.environment == Environment.LOCAL:
            return [
                "http://localhost:3000",
                "http://localhost:5173",
            ]
        return []


settings = Settings()
