"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/fluxo.db"


@dataclass
class SchedulerConfig:
    """Activity reminder schedule configuration."""

    enabled: bool = True
    interval_seconds: int = 60


@dataclass
class DiscordAlertConfig:
    """Discord webhook used for platform-level activity alerts."""

    webhook_url: Optional[str] = None
    mention_users: bool = False


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    retention_limit: int = 200
    default_alert_minutes: int = 15
    discord: DiscordAlertConfig = field(default_factory=DiscordAlertConfig)


@dataclass
class AssistantConfig:
    """Hosted generative model configuration."""

    api_key: Optional[str] = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    chat_model: str = "gemini-2.5-flash"
    bot_model: str = "gemini-3-pro-preview"
    image_model: str = "gemini-3-pro-image-preview"
    image_fallback_model: str = "gemini-2.5-flash-image"
    timeout_seconds: int = 30


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"
    admin_email: str = "admin@fluxo.com"
    admin_password: Optional[str] = None


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    assistant: AssistantConfig = field(default_factory=AssistantConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path", DatabaseConfig.path)
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    scheduler = config_dict.get("scheduler") or {}
    interval = scheduler.get("interval_seconds", SchedulerConfig.interval_seconds)
    if not isinstance(interval, int) or interval <= 0:
        raise ConfigValidationError("scheduler.interval_seconds must be a positive integer")

    notifications = config_dict.get("notifications") or {}
    retention = notifications.get("retention_limit", NotificationsConfig.retention_limit)
    if not isinstance(retention, int) or retention <= 0:
        raise ConfigValidationError("notifications.retention_limit must be a positive integer")
    minutes = notifications.get(
        "default_alert_minutes", NotificationsConfig.default_alert_minutes
    )
    if not isinstance(minutes, int) or minutes <= 0:
        raise ConfigValidationError(
            "notifications.default_alert_minutes must be a positive integer"
        )

    advanced = config_dict.get("advanced") or {}
    log_level = str(advanced.get("log_level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigValidationError(f"Unknown log level: {log_level}")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    config_dict = _substitute_env_vars(raw_config)

    _validate_config(config_dict)

    database = DatabaseConfig(**(config_dict.get("database") or {}))
    scheduler = SchedulerConfig(**(config_dict.get("scheduler") or {}))

    # Notifications
    notif_dict = dict(config_dict.get("notifications") or {})
    discord_dict = notif_dict.pop("discord", None) or {}
    if not discord_dict.get("webhook_url"):
        discord_dict["webhook_url"] = None
    notifications = NotificationsConfig(
        discord=DiscordAlertConfig(**discord_dict),
        **notif_dict,
    )

    # Assistant; an empty substituted key means "not configured"
    assistant_dict = dict(config_dict.get("assistant") or {})
    if not assistant_dict.get("api_key"):
        assistant_dict["api_key"] = os.environ.get("GEMINI_API_KEY") or None
    assistant = AssistantConfig(**assistant_dict)

    advanced_dict = dict(config_dict.get("advanced") or {})
    if "log_level" in advanced_dict:
        advanced_dict["log_level"] = str(advanced_dict["log_level"]).upper()
    if not advanced_dict.get("admin_password"):
        advanced_dict["admin_password"] = None
    advanced = AdvancedConfig(**advanced_dict)

    return AppConfig(
        database=database,
        scheduler=scheduler,
        notifications=notifications,
        assistant=assistant,
        advanced=advanced,
    )
