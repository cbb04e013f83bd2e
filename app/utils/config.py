"""
Configuration management for export ingestion.

Uses pydantic-settings to load configuration from environment variables,
.env files and a ``config.yml`` in the working directory.
"""

from pathlib import Path
from typing import Optional, Tuple, Type

import yaml
from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment and config.yml."""

    # Elasticsearch Configuration
    es_host: str = "localhost"
    es_port: int = 9200
    es_protocol: str = "http"
    es_username: Optional[str] = None
    es_password: Optional[str] = None
    es_request_timeout: float = 30.0
    es_index_prefix: str = "qbserve-"
    es_document_type: Optional[str] = None

    # Export Configuration
    export_dir: Path = Path("exports")
    export_pattern: str = "*.json"
    watch_settle_seconds: float = 1.0  # quiet period before a watched file is processed

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yml",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        """Reject levels loguru does not know."""
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Add config.yml below environment variables and .env."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def es_auth(self) -> Optional[Tuple[str, str]]:
        """Return basic auth credentials only when both are configured."""
        if self.es_username and self.es_password:
            return (self.es_username, self.es_password)
        return None

    def es_url(self) -> str:
        """Connection URL without credentials, for logging."""
        return f"{self.es_protocol}://{self.es_host}:{self.es_port}"


def load_settings(config_file: Optional[Path] = None, **overrides) -> Settings:
    """
    Load settings once at startup.

    Args:
        config_file: Explicit YAML file; its values take precedence over the
            environment
        **overrides: Values that take precedence over every source

    Returns:
        Settings instance
    """
    values = {}
    if config_file is not None:
        with open(config_file, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")
        values.update(loaded)

    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)
