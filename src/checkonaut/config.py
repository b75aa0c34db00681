"""Configuration management for checkonaut using Pydantic models."""

import json
import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONFIG_FILE_NAME = ".checkonaut.json"


class BindingMode(str, Enum):
    """How a test file gets access to the entrypoint it tests."""
    EXPLICIT = "explicit"  # the test file require()s its check itself
    IMPLICIT = "implicit"  # the sibling check file is bound before the test loads


class LogLevel(str, Enum):
    """Logging levels."""
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"


class DiscoveryConfig(BaseModel):
    """File discovery configuration section."""
    dotfiles: bool = False
    dotdirs: bool = False
    follow_links: bool = Field(alias="followLinks", default=False)
    exclude: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class EngineConfig(BaseModel):
    """Script execution configuration section."""
    entrypoint: str = "Check"
    test_prefix: str = Field(alias="testPrefix", default="Test")
    test_suffix: str = Field(alias="testSuffix", default="_test.lua")
    binding: BindingMode = BindingMode.EXPLICIT
    timeout_seconds: float | None = Field(alias="timeoutSeconds", default=30.0)
    workers: int | None = None
    read_root: str | None = Field(alias="readRoot", default=None)

    @field_validator("entrypoint", "test_prefix")
    @classmethod
    def validate_identifier(cls, v):
        if not v.isidentifier():
            raise ValueError(f"must be a valid Lua identifier, got: {v!r}")
        return v

    @field_validator("test_suffix")
    @classmethod
    def validate_test_suffix(cls, v):
        if not v.lower().endswith(".lua"):
            raise ValueError(f"test suffix must end with '.lua', got: {v!r}")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v is not None and v <= 0:
            raise ValueError("timeout_seconds must be > 0 (or null to disable)")
        return v

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v):
        if v is not None and v < 1:
            raise ValueError("workers must be >= 1")
        return v

    model_config = ConfigDict(populate_by_name=True)

    def effective_workers(self) -> int:
        """Worker threads to use; defaults to one per CPU."""
        return self.workers or os.cpu_count() or 1

    def resolved_read_root(self) -> Path:
        """Directory that ReadJSON paths are resolved against."""
        return Path(self.read_root or Path.cwd()).resolve()


class LoggingConfig(BaseModel):
    """Logging configuration section."""
    level: LogLevel = LogLevel.WARN

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class CheckonautConfig(BaseModel):
    """Complete checkonaut configuration model."""
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid")


def load_config(config_path: str | Path | None = None) -> CheckonautConfig:
    """Load configuration from file with fallback to defaults.

    Args:
        config_path: Optional path to configuration file. If None, searches
                    current directory and parents for .checkonaut.json

    Returns:
        CheckonautConfig: Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file specified but not found
        ValueError: If configuration is invalid
    """
    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            return CheckonautConfig()
    else:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {config_path}: {e}")

    try:
        config = CheckonautConfig(**config_data)
    except Exception as e:
        raise ValueError(f"Failed to load config from {config_path}: {e}")

    # A relative read root is relative to the config file, not the cwd
    read_root = config.engine.read_root
    if read_root is not None and not Path(read_root).is_absolute():
        config.engine.read_root = str((config_path.parent / read_root).resolve())
    return config


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Find .checkonaut.json configuration file by searching up directory tree.

    Args:
        start_dir: Directory to start search from (default: current directory)

    Returns:
        Path to config file if found, None otherwise
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = Path(start_dir).resolve()

    while True:
        config_file = current / CONFIG_FILE_NAME
        if config_file.exists():
            return config_file

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None
