"""Configuration management for MailGate.

Settings come from the environment (and an optional ``.env`` file) through
pydantic-settings, and may be overlaid by a YAML configuration file.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# YAML section/key -> Settings field
YAML_KEY_MAP: Dict[str, Dict[str, str]] = {
    "application": {
        "auto_check_interval": "auto_check_interval_minutes",
        "auto_check_interval_minutes": "auto_check_interval_minutes",
        "token_ttl_hours": "token_ttl_hours",
        "check_lease_minutes": "check_lease_minutes",
        "embedded_scheduler": "embedded_scheduler",
        "app_name": "app_name",
        "debug": "debug",
    },
    "email": {
        "imap_server": "imap_host",
        "imap_port": "imap_port",
        "imap_use_ssl": "imap_use_ssl",
        "imap_folder": "imap_folder",
        "imap_timeout": "imap_timeout",
        "smtp_server": "smtp_host",
        "smtp_port": "smtp_port",
        "enable_ssl": "smtp_use_tls",
        "sender_email": "smtp_from_email",
        "sender_name": "smtp_from_name",
        "username": "mail_user",
        "password": "mail_password",
    },
    "database": {
        "connection_string": "database_url",
        "url": "database_url",
    },
    "logging": {
        "level": "log_level",
        "dir": "log_dir",
        "to_file": "log_to_file",
    },
    "celery": {
        "broker_url": "celery_broker_url",
    },
}


class Settings(BaseSettings):
    # App
    app_name: str = "MailGate"
    debug: bool = False

    # Approval workflow
    auto_check_interval_minutes: int = 5
    token_ttl_hours: int = 168  # 0 disables expiry
    check_lease_minutes: int = 15
    # Run the interval scheduler inside the API process instead of Celery beat
    embedded_scheduler: bool = False

    # Database
    database_url: str = "sqlite:///mailgate.db"

    # Mail account shared by IMAP and SMTP unless overridden
    mail_user: Optional[str] = None
    mail_password: Optional[str] = None

    # Inbound (IMAP)
    imap_host: str = "imap.gmail.com"
    imap_port: int = 993
    imap_use_ssl: bool = True
    imap_user: Optional[str] = None
    imap_password: Optional[str] = None
    imap_folder: str = "INBOX"
    imap_timeout: int = 30  # seconds

    # Outbound (SMTP)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_from_email: str = ""
    smtp_from_name: str = "MailGate"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = False

    # Celery
    celery_broker_url: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("auto_check_interval_minutes")
    @classmethod
    def _interval_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("auto_check_interval_minutes must be at least 1")
        return value

    @field_validator("check_lease_minutes")
    @classmethod
    def _lease_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("check_lease_minutes must be at least 1")
        return value

    @field_validator("token_ttl_hours")
    @classmethod
    def _ttl_not_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("token_ttl_hours must not be negative")
        return value

    @property
    def poll_interval_seconds(self) -> int:
        return self.auto_check_interval_minutes * 60

    @property
    def imap_username(self) -> Optional[str]:
        return self.imap_user or self.mail_user or self.smtp_from_email or None

    @property
    def imap_secret(self) -> Optional[str]:
        return self.imap_password or self.mail_password

    @property
    def smtp_username(self) -> Optional[str]:
        return self.smtp_user or self.mail_user or self.smtp_from_email or None

    @property
    def smtp_secret(self) -> Optional[str]:
        return self.smtp_password or self.mail_password

    @property
    def mailbox_configured(self) -> bool:
        return bool(self.imap_host and self.imap_username and self.imap_secret)


def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary with environment variables expanded

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def flatten_config(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Map YAML sections onto flat ``Settings`` field names.

    Unknown sections and keys are ignored. Top-level scalar keys that match
    a ``Settings`` field are passed through unchanged.
    """
    flat: Dict[str, Any] = {}
    for key, value in config_dict.items():
        if isinstance(value, dict):
            mapping = YAML_KEY_MAP.get(key, {})
            for sub_key, sub_value in value.items():
                field_name = mapping.get(sub_key)
                if field_name and sub_value is not None:
                    flat[field_name] = sub_value
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build settings from the environment, overlaid by a YAML file if given."""
    if config_path is None:
        return Settings()
    return Settings(**flatten_config(load_config(config_path)))


@lru_cache
def get_settings() -> Settings:
    return load_settings(os.environ.get("MAILGATE_CONFIG"))
