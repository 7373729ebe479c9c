"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. Anomaly thresholds and offline sync
limits live here so they can be tuned per deployment without code changes.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - SQLite for local dev, PostgreSQL in production
    database_url: str = "sqlite:///./stockcount.db"

    # Security
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240  # 4 hours

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # ==========================================================================
    # Anomaly detection
    # ==========================================================================
    anomaly_empty_container_threshold_grams: float = 10.0
    anomaly_outlier_z_threshold: float = 3.0
    anomaly_outlier_history_window: int = 20
    anomaly_outlier_min_samples: int = 5
    anomaly_max_density_grams_per_litre: float = 1200.0  # food products <= 1.2 kg/L

    # ==========================================================================
    # Counting workflows
    # ==========================================================================
    default_keg_empty_weight_grams: float = 13300.0  # standard 50L keg shell
    default_keg_volume_liters: float = 50.0
    default_keg_freshness_days: int = 14
    keg_density_grams_per_litre: float = 1010.0  # beer ~1.01 kg/L
    keypad_max_decimal_places: int = 2
    keypad_max_digits: int = 7

    # ==========================================================================
    # Offline capture / sync client
    # ==========================================================================
    offline_queue_path: str = "./data/offline_scans.json"
    sync_server_url: str = "http://localhost:8000"
    sync_max_attempts: int = 3
    sync_settle_delay_seconds: float = 1.0
    sync_request_timeout_seconds: float = 10.0

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == "change-me-in-production" or len(v) < 32:
            import warnings
            warnings.warn(
                "SECRET_KEY is insecure! Set a SECRET_KEY environment variable of 32+ characters.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator("sync_max_attempts", "anomaly_outlier_min_samples")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production safety."""
        if not self.debug:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if len(self.secret_key) < 32:
                raise ValueError(
                    f"FATAL: SECRET_KEY must be at least 32 characters in production mode "
                    f"(current length: {len(self.secret_key)})."
                )
        if self.anomaly_outlier_history_window < self.anomaly_outlier_min_samples:
            raise ValueError(
                "anomaly_outlier_history_window must be >= anomaly_outlier_min_samples"
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
