"""
FileVault Configuration — Load and validate filevault.yaml at startup.

Usage:
    from filevault.engine.config import load_config

    config = load_config()            # auto-discover filevault.yaml
    config = load_config("x.yaml")    # explicit path

A missing file yields the defaults. The storage folder can also be set with
the FOLDER_PATH environment variable, which wins over the file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from filevault.engine.errors import VaultConfigError

CONFIG_FILE_NAME = "filevault.yaml"
DEFAULT_FOLDER_PATH = "/tmp/files_manager"


# ---------------------------------------------------------------------------
# Pydantic models for filevault.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///filevault.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379/0"
    session_db: int = 0
    session_prefix: str = "auth_"
    session_ttl: int = 86400


class QueueConfig(BaseModel):
    broker_url: str = "redis://localhost:6379/0"
    name: str = "filevault.derivation"
    visibility_timeout: int = 3600
    max_attempts: int = 3

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v


class StorageConfig(BaseModel):
    folder_path: str = DEFAULT_FOLDER_PATH


class ThumbnailConfig(BaseModel):
    widths: List[int] = Field(default_factory=lambda: [500, 250, 100])

    @field_validator("widths")
    @classmethod
    def validate_widths(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("at least one thumbnail width is required")
        if any(w <= 0 for w in v):
            raise ValueError("thumbnail widths must be positive")
        if len(set(v)) != len(v):
            raise ValueError("thumbnail widths must be unique")
        return v


class ListingConfig(BaseModel):
    page_size: int = 20


class LogRetentionConfig(BaseModel):
    execution_days: int = 90
    performance_days: int = 30
    security_days: int = 365


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".filevault/logs"
    compress_after_days: int = 7
    retention: LogRetentionConfig = Field(default_factory=LogRetentionConfig)
    async_queue: LogAsyncQueueConfig = Field(default_factory=LogAsyncQueueConfig)


class VaultConfig(BaseModel):
    """Root model for filevault.yaml."""
    name: str = "FileVault"
    environment: str = "dev"

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    thumbnails: ThumbnailConfig = Field(default_factory=ThumbnailConfig)
    listing: ListingConfig = Field(default_factory=ListingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading
# ---------------------------------------------------------------------------

def find_config_file() -> Optional[Path]:
    """Walk up from the CWD looking for filevault.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Optional[str] = None) -> VaultConfig:
    """
    Load and validate filevault.yaml.

    Args:
        config_path: Explicit path. If None, auto-discovers from the CWD.

    Returns:
        Validated VaultConfig instance.

    Raises:
        VaultConfigError: unreadable YAML or invalid values.
    """
    path = Path(config_path) if config_path else find_config_file()

    raw: dict = {}
    if path is not None and path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise VaultConfigError(f"Cannot parse {path.name}", path=str(path)) from e
        if not isinstance(raw, dict):
            raise VaultConfigError(f"{path.name} must contain a mapping", path=str(path))

    try:
        config = VaultConfig(**raw)
    except ValidationError as e:
        raise VaultConfigError(
            f"Invalid configuration: {e.error_count()} error(s)",
            validation_errors=e.errors(),
        ) from e

    folder_override = os.environ.get("FOLDER_PATH")
    if folder_override:
        config.storage.folder_path = folder_override

    return config
