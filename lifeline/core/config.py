"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from lifeline.core.config import settings
    print(settings.RATE_LIMIT_MAX_SENDS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Lifeline Emergency Alerts"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server (local device agent) ──
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # ── Classifier artifacts ──
    MODEL_DIR: str = "models"
    URGENCY_VOCAB_PATH: str = "models/urgency_vocabulary.json"
    URGENCY_MODEL_PATH: str = "models/urgency_nb.json"
    URGENCY_LABELS_PATH: Optional[str] = "models/urgency_labels.json"
    URGENCY_USE_BIGRAMS: bool = True
    CATEGORY_VOCAB_PATH: str = "models/vectorizer.json"
    CATEGORY_MODEL_PATH: str = "models/category_model.onnx"
    CATEGORY_LABELS_PATH: Optional[str] = "models/category_labels.json"
    PREWARM_MODELS: bool = True  # load artifacts at startup instead of first use

    # ── Submission policy ──
    RATE_LIMIT_MAX_SENDS: int = 5
    RATE_LIMIT_WINDOW_SECONDS: float = 3600.0
    SEND_COOLDOWN_SECONDS: float = 10.0
    LOCATION_TIMEOUT_SECONDS: float = 10.0
    PENDING_QUEUE_CAPACITY: int = 1  # 1 = single pending slot per device
    DEFAULT_MESSAGE: str = "HELP"
    FALLBACK_LABEL: str = "Unknown"

    # ── Remote alert store ──
    ALERT_STORE_URL: str = "http://localhost:9000/api/alerts"
    ALERT_STORE_TIMEOUT: float = 15.0  # seconds
    ALERT_STORE_TOKEN: Optional[str] = None

    # ── Device-local storage ──
    LOCAL_STORE_BACKEND: str = "json"  # json | memory | redis
    LOCAL_STORE_PATH: str = "data/device_state.json"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "lifeline:"

    # ── Geolocation ──
    GEOLOCATION_URL: Optional[str] = None  # e.g. a gpsd bridge or IP lookup
    DEVICE_LATITUDE: Optional[float] = None  # fixed install location
    DEVICE_LONGITUDE: Optional[float] = None

    # ── Identity ──
    DEVICE_USER_ID: Optional[str] = None
    DEVICE_USER_EMAIL: Optional[str] = None
    DEVICE_USER_TEMPORARY: bool = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
