"""Configuration module for the Session Gateway.

Implements Pydantic v2 Settings for configuration management with support for:
- Environment variables (SESSION_GATEWAY_* prefix, plus the bare
  MAX_RETRIES / RECONNECT_INTERVAL / APP_URL / APP_KEY names)
- YAML/TOML configuration files
- Command-line argument overrides
- Fail-fast validation at startup

Configuration priority (later overrides earlier):
1. Built-in defaults
2. Configuration file (YAML/TOML)
3. Environment variables
4. Command-line arguments
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration with sensible defaults.

    Example:
        # Load from environment only
        settings = Settings()

        # Override specific values
        settings = Settings(max_retries=3, reconnect_interval_ms=5000)
    """

    model_config = SettingsConfigDict(
        env_prefix="SESSION_GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ========================================
    # Application Settings
    # ========================================

    environment: Literal["lab", "staging", "prod"] = Field(
        default="lab", description="Deployment environment"
    )

    debug: bool = Field(default=False, description="Enable debug mode with verbose logging")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    log_format: Literal["json", "text"] = Field(default="json", description="Log output format")

    # ========================================
    # Session Storage
    # ========================================

    sessions_dir: Path = Field(
        default=Path("./sessions"),
        description="Root directory for credentials and chat store files",
    )

    store_flush_interval_seconds: int = Field(
        default=600, ge=10, le=86400, description="Periodic chat store flush interval"
    )

    # ========================================
    # Reconnection Policy
    # ========================================

    max_retries: int = Field(
        default=1,
        validation_alias=AliasChoices(
            "max_retries", "MAX_RETRIES", "SESSION_GATEWAY_MAX_RETRIES"
        ),
        description="Reconnect attempts before a session is finalized (values below 1 act as 1)",
    )

    reconnect_interval_ms: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices(
            "reconnect_interval_ms",
            "RECONNECT_INTERVAL",
            "SESSION_GATEWAY_RECONNECT_INTERVAL",
        ),
        description="Delay before a reconnect attempt, in milliseconds",
    )

    send_delay_ms: int = Field(
        default=1000, ge=0, le=60000, description="Default pacing delay before outbound sends"
    )

    # ========================================
    # Consumer (webhook / device status) Endpoints
    # ========================================

    app_url: str = Field(
        default="http://localhost:8000",
        validation_alias=AliasChoices("app_url", "APP_URL", "SESSION_GATEWAY_APP_URL"),
        description="Base URL of the webhook and device-status consumer",
    )

    app_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("app_key", "APP_KEY", "SESSION_GATEWAY_APP_KEY"),
        description="Shared key sent to the consumer as X-Webhook-Token",
    )

    consumer_timeout_seconds: float = Field(
        default=10.0, ge=1.0, le=120.0, description="HTTP timeout for consumer calls"
    )

    # ========================================
    # Protocol Engine
    # ========================================

    protocol_engine: str | None = Field(
        default=None,
        description="Dotted path to the protocol engine factory ('package.module:Factory')",
    )

    protocol_version: list[int] = Field(
        default_factory=lambda: [2, 913, 4], description="Protocol client version triple"
    )

    protocol_browser: list[str] = Field(
        default_factory=lambda: ["Mac OS", "Desktop", "10.15.7"],
        description="Browser description announced to the remote end",
    )

    # ========================================
    # Validators
    # ========================================

    @field_validator("app_url")
    @classmethod
    def validate_app_url(cls, v: str) -> str:
        """Validate consumer base URL and strip the trailing slash."""
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("app_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("protocol_engine")
    @classmethod
    def validate_protocol_engine(cls, v: str | None) -> str | None:
        """Validate engine factory path format."""
        if v is not None and ":" not in v:
            raise ValueError("protocol_engine must look like 'package.module:Factory'")
        return v

    # ========================================
    # Helper Methods
    # ========================================

    @property
    def effective_max_retries(self) -> int:
        """Retry ceiling actually enforced (never below 1)."""
        return max(1, self.max_retries)

    def to_dict(self) -> dict:
        """Convert settings to dictionary, masking secrets."""
        data = self.model_dump()
        if data.get("app_key"):
            data["app_key"] = "***REDACTED***"
        return data


# ========================================
# Global Settings Instance
# ========================================

_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set global settings instance.

    Args:
        settings: Settings instance to use globally
    """
    global _settings
    _settings = settings


def load_settings_from_file(config_file: Path | str) -> Settings:
    """Load settings from YAML or TOML configuration file.

    Args:
        config_file: Path to configuration file

    Returns:
        Settings instance loaded from file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid

    Example:
        settings = load_settings_from_file("config/prod.yaml")
        set_settings(settings)
    """
    config_path = Path(config_file)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in [".yaml", ".yml"]:
        import yaml

        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}
    elif suffix == ".toml":
        import tomllib

        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}. Use .yaml, .yml, or .toml")

    return Settings(**config_data)
