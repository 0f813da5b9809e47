"""Engine configuration.

Settings are a plain dataclass so tests can instantiate them directly;
``from_env`` reads ``PEERWAGER_*`` environment variables. The application
layer registers its settings once at startup with ``set_settings``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from . import defaults
from .exceptions import ConfigException


def _env_bool(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigException(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigException(f"{name} must be a number, got {raw!r}") from e


@dataclass
class EngineSettings:
    """Concrete engine configuration."""

    # Settlement
    spam_penalty: int = defaults.SPAM_PENALTY
    min_remark_length: int = defaults.MIN_REMARK_LENGTH
    initial_balance: int = defaults.INITIAL_BALANCE

    # Oracles
    oracle_timeout_seconds: float = defaults.ORACLE_TIMEOUT_SECONDS
    oracle_base_url: str = defaults.ORACLE_BASE_URL
    oracle_models: list[str] = field(default_factory=lambda: list(defaults.ORACLE_MODELS))
    oracle_api_key: str = ""

    # Storage
    database_url: str | None = None

    # HTTP
    rate_limit_rpm: int = defaults.RATE_LIMIT_RPM

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if self.spam_penalty < 0:
            raise ConfigException("spam_penalty must be >= 0", {"spam_penalty": self.spam_penalty})
        if self.min_remark_length < 1:
            raise ConfigException("min_remark_length must be >= 1", {"min_remark_length": self.min_remark_length})
        if self.oracle_timeout_seconds <= 0:
            raise ConfigException(
                "oracle_timeout_seconds must be positive",
                {"oracle_timeout_seconds": self.oracle_timeout_seconds},
            )
        if not self.oracle_models:
            raise ConfigException("oracle_models must name at least one model")

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Create settings from environment variables."""
        models_raw = os.environ.get("PEERWAGER_ORACLE_MODELS", "")
        models = [m.strip() for m in models_raw.split(",") if m.strip()] or list(defaults.ORACLE_MODELS)
        return cls(
            spam_penalty=_env_int("PEERWAGER_SPAM_PENALTY", defaults.SPAM_PENALTY),
            min_remark_length=_env_int("PEERWAGER_MIN_REMARK_LENGTH", defaults.MIN_REMARK_LENGTH),
            initial_balance=_env_int("PEERWAGER_INITIAL_BALANCE", defaults.INITIAL_BALANCE),
            oracle_timeout_seconds=_env_float("PEERWAGER_ORACLE_TIMEOUT", defaults.ORACLE_TIMEOUT_SECONDS),
            oracle_base_url=os.environ.get("PEERWAGER_ORACLE_BASE_URL", defaults.ORACLE_BASE_URL),
            oracle_models=models,
            oracle_api_key=os.environ.get("GEMINI_API_KEY", ""),
            database_url=os.environ.get("PEERWAGER_DATABASE_URL"),
            rate_limit_rpm=_env_int("PEERWAGER_RATE_LIMIT_RPM", defaults.RATE_LIMIT_RPM),
            log_level=os.environ.get("PEERWAGER_LOG_LEVEL", "INFO"),
            log_json=_env_bool("PEERWAGER_LOG_JSON"),
        )


# Global settings - set by application layer at startup
_settings: EngineSettings | None = None


def set_settings(settings: EngineSettings) -> None:
    """Register process-wide settings."""
    global _settings
    _settings = settings


def get_settings() -> EngineSettings:
    """Return registered settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def clear_settings() -> None:
    """Forget registered settings (used by tests)."""
    global _settings
    _settings = None
