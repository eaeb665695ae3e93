"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """DeployLens configuration loaded from ``DEPLOYLENS_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="DEPLOYLENS_")

    # Application
    app_name: str = "DeployLens"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"  # development, staging, production

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # console | json

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_prefix: str = "/api/v1"

    # Deployment tracking
    detection_interval_seconds: float = 5.0
    monitoring_interval_seconds: float = 10.0
    correlation_window_seconds: float = 300.0
    completion_threshold_seconds: float = 600.0
    history_limit: int = 50
    services: list[str] = []

    # Incident forensics
    default_lookback_hours: float = 24.0
    suspicious_threshold: float = 0.3
    high_risk_threshold: float = 0.7
