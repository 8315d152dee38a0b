"""
Vigil Configuration Management.

Handles loading, saving, and validating configuration from various sources:
- Default values
- Configuration files (TOML)
- Environment variables
- Command-line arguments
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, List

import yaml


# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "vigil"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "vigil"


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for the job runner."""

    # Periodic tick
    enabled: bool = True
    tick_interval: int = 60  # seconds between due-job sweeps

    # Execution lock lifetime and handler budget. Keep it well above the
    # slowest handler: an overrunning handler's lock can be reclaimed.
    lock_max_duration: int = 300  # seconds

    # Job defaults
    default_schedule: str = "0 */6 * * *"  # Every 6 hours

    # Execution history retention used by history_cleanup jobs
    history_retention_days: int = 30

    # Load extra handlers from the vigil.handlers entry-point group
    load_entry_points: bool = True

    # Identifies this runner in lock records (auto-generated if unset)
    instance_id: Optional[str] = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class VigilConfig:
    """Main configuration container for Vigil."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    # Sub-configurations
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database
    database_url: str = ""

    def __post_init__(self):
        """Initialize derived values."""
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/vigil.db"


def get_config_path(env_prefix: str = "VIGIL_") -> Path:
    """Default config file location, honouring {prefix}CONFIG_DIR."""
    env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
    config_dir = Path(env_config_dir) if env_config_dir else DEFAULT_CONFIG_DIR
    return config_dir / DEFAULT_CONFIG_FILE


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "VIGIL_"
) -> VigilConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/vigil/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = VigilConfig()

    if config_path is None:
        config_path = get_config_path(env_prefix)

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    return config


def _load_from_file(path: Path, config: VigilConfig) -> VigilConfig:
    """Load configuration from a TOML file."""
    from vigil_cli.cli.error_handler import ConfigurationError

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load config from {path}: {e}",
            details={"path": str(path)},
        ) from e

    if "scheduler" in data:
        for key, value in data["scheduler"].items():
            if hasattr(config.scheduler, key):
                setattr(config.scheduler, key, value)

    if "logging" in data:
        for key, value in data["logging"].items():
            if hasattr(config.logging, key):
                setattr(config.logging, key, Path(value) if key == "file" else value)

    # Top-level settings
    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])
        if "database_url" not in data:
            config.database_url = f"sqlite:///{config.data_dir}/vigil.db"
    if "database_url" in data:
        config.database_url = data["database_url"]

    return config


def _load_from_env(config: VigilConfig, prefix: str) -> VigilConfig:
    """Load configuration from environment variables."""

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}SCHEDULER_ENABLED"):
        config.scheduler.enabled = env_val.lower() in ("true", "1", "yes")
    if env_val := os.environ.get(f"{prefix}TICK_INTERVAL"):
        config.scheduler.tick_interval = int(env_val)
    if env_val := os.environ.get(f"{prefix}LOCK_MAX_DURATION"):
        config.scheduler.lock_max_duration = int(env_val)
    if env_val := os.environ.get(f"{prefix}DEFAULT_SCHEDULE"):
        config.scheduler.default_schedule = env_val
    if env_val := os.environ.get(f"{prefix}INSTANCE_ID"):
        config.scheduler.instance_id = env_val

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)
        if not os.environ.get(f"{prefix}DATABASE_URL"):
            config.database_url = f"sqlite:///{config.data_dir}/vigil.db"
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def save_config(config: VigilConfig, path: Optional[Path] = None) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save
        path: Path to save to (default: config.config_dir / config.toml)
    """
    if path is None:
        path = config.config_dir / DEFAULT_CONFIG_FILE

    path.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        "# Vigil Configuration",
        "# Generated automatically - edit with care",
        "",
        f'config_dir = "{config.config_dir}"',
        f'data_dir = "{config.data_dir}"',
        f'database_url = "{config.database_url}"',
        "",
        "[scheduler]",
        f"enabled = {str(config.scheduler.enabled).lower()}",
        f"tick_interval = {config.scheduler.tick_interval}",
        f"lock_max_duration = {config.scheduler.lock_max_duration}",
        f'default_schedule = "{config.scheduler.default_schedule}"',
        f"history_retention_days = {config.scheduler.history_retention_days}",
        f"load_entry_points = {str(config.scheduler.load_entry_points).lower()}",
    ]
    if config.scheduler.instance_id:
        lines.append(f'instance_id = "{config.scheduler.instance_id}"')

    lines.extend([
        "",
        "[logging]",
        f'level = "{config.logging.level}"',
    ])
    if config.logging.file:
        lines.append(f'file = "{config.logging.file}"')

    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")


def ensure_directories(config: VigilConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance (lazy-loaded)
_global_config: Optional[VigilConfig] = None


def get_config() -> VigilConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: VigilConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def validate_config(config: Optional[VigilConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    from vigil_cli.scheduler.schedule import validate_schedule

    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    # Scheduler validation
    if config.scheduler.lock_max_duration <= 0:
        errors.append(ValidationError(
            field="scheduler.lock_max_duration",
            message="Lock max duration must be a positive number of seconds",
            severity="error"
        ))
    elif config.scheduler.lock_max_duration < 60:
        errors.append(ValidationError(
            field="scheduler.lock_max_duration",
            message=(
                f"Lock max duration of {config.scheduler.lock_max_duration}s is short; "
                "slow handlers may have their lock reclaimed while still running"
            ),
            severity="warning"
        ))

    if config.scheduler.tick_interval <= 0:
        errors.append(ValidationError(
            field="scheduler.tick_interval",
            message="Tick interval must be a positive number of seconds",
            severity="error"
        ))

    if not validate_schedule(config.scheduler.default_schedule):
        errors.append(ValidationError(
            field="scheduler.default_schedule",
            message=f"Invalid schedule expression: {config.scheduler.default_schedule}",
            severity="error"
        ))

    if config.scheduler.history_retention_days < 1:
        errors.append(ValidationError(
            field="scheduler.history_retention_days",
            message="History retention must be at least one day",
            severity="error"
        ))

    # Logging validation
    if config.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(ValidationError(
            field="logging.level",
            message=f"Unknown log level: {config.logging.level}",
            severity="error"
        ))

    # Path validation
    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning"
        ))

    try:
        if config.data_dir.exists():
            test_file = config.data_dir / ".write_test"
            test_file.touch()
            test_file.unlink()
    except (PermissionError, OSError):
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory is not writable: {config.data_dir}",
            severity="error"
        ))

    return errors


def _config_to_dict(config: VigilConfig, mask_secrets: bool = True) -> dict[str, Any]:
    """
    Convert configuration to dictionary.

    Args:
        config: Configuration to convert
        mask_secrets: If True, mask credentials embedded in the database URL

    Returns:
        Dictionary representation of config
    """
    database_url = config.database_url
    if mask_secrets and "@" in database_url and "://" in database_url:
        scheme, rest = database_url.split("://", 1)
        credentials, host = rest.rsplit("@", 1)
        user = credentials.split(":", 1)[0]
        database_url = f"{scheme}://{user}:****@{host}"

    return {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": database_url,
        "scheduler": {
            "enabled": config.scheduler.enabled,
            "tick_interval": config.scheduler.tick_interval,
            "lock_max_duration": config.scheduler.lock_max_duration,
            "default_schedule": config.scheduler.default_schedule,
            "history_retention_days": config.scheduler.history_retention_days,
            "load_entry_points": config.scheduler.load_entry_points,
            "instance_id": config.scheduler.instance_id,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


def export_config_yaml(config: VigilConfig, mask_secrets: bool = True) -> str:
    """
    Export configuration as YAML string.

    Args:
        config: Configuration to export
        mask_secrets: If True, mask sensitive values

    Returns:
        YAML string representation of config
    """
    config_dict = _config_to_dict(config, mask_secrets)
    return yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)


def export_config_json(config: VigilConfig, mask_secrets: bool = True) -> str:
    """
    Export configuration as JSON string.

    Args:
        config: Configuration to export
        mask_secrets: If True, mask sensitive values

    Returns:
        JSON string representation of config
    """
    config_dict = _config_to_dict(config, mask_secrets)
    return json.dumps(config_dict, indent=2)
