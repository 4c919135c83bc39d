"""
Form Builder Configuration — Load and validate formbuilder.yaml at startup.

Usage:
    from formbuilder.engine.config import load_config, get_config
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from formbuilder.engine.errors import FormBuilderConfigError

CONFIG_FILE_NAME = "formbuilder.yaml"


# ---------------------------------------------------------------------------
# Pydantic models for formbuilder.yaml
# ---------------------------------------------------------------------------

class StorageConfig(BaseModel):
    backend: str = "memory"
    url: str = "sqlite:///formbuilder.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    create_tables: bool = False

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("memory", "sql"):
            raise ValueError(f"storage.backend must be memory/sql, got '{v}'")
        return v


class SubmissionsConfig(BaseModel):
    default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=1000, ge=1)
    default_sort: str = "-created_on"


class CaptchaConfig(BaseModel):
    verify_url: str = "https://www.google.com/recaptcha/api/siteverify"
    timeout_seconds: float = 10.0


class LogRetentionConfig(BaseModel):
    execution_days: int = 90
    security_days: int = 365


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    enabled: bool = False
    level: str = "INFO"
    directory: str = ".formbuilder/logs"
    compress_after_days: int = 7
    retention: LogRetentionConfig = LogRetentionConfig()
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class FormBuilderConfig(BaseModel):
    """Root model for formbuilder.yaml."""
    name: str = "Form Builder"
    environment: str = "dev"
    tenant: str = "root"
    locale: str = "en-US"

    storage: StorageConfig = StorageConfig()
    submissions: SubmissionsConfig = SubmissionsConfig()
    captcha: CaptchaConfig = CaptchaConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[FormBuilderConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for formbuilder.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILE_NAME).exists():
            return parent
    return current


def load_config(config_path: Optional[str] = None) -> FormBuilderConfig:
    """
    Load and validate formbuilder.yaml.

    Args:
        config_path: Explicit path to formbuilder.yaml. If None, auto-discovers.

    Returns:
        Validated FormBuilderConfig instance.
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILE_NAME)

    path = Path(config_path)
    if not path.exists():
        # Return defaults if no config file
        _config = FormBuilderConfig()
        return _config

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    # Accept both a flat file and one nested under a top-level "formbuilder" key
    data = raw.get("formbuilder", raw)

    try:
        _config = FormBuilderConfig(**data)
    except ValidationError as e:
        raise FormBuilderConfigError(
            f"Invalid {path.name}: {e.error_count()} error(s)",
            config_path=str(path),
            errors=e.errors(),
        ) from e
    return _config


def get_config() -> FormBuilderConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_environment() -> str:
    """Get the current environment."""
    return get_config().environment
