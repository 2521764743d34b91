"""Configuration management using environment variables, .env files and CLI overrides."""
from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from ..exceptions import ConfigurationError
from ..utils.retry import RetryConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "DAGDEPLOY_"

REQUIRED_FIELDS = ("name", "location", "dag_list", "dags_dir")


def _parse_bool(value: str | bool | None) -> bool:
    """Parse boolean value from various formats."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return value.lower() in ("true", "1", "yes", "on", "enabled")


def _getenv(key: str, default: str = "") -> str:
    """Get a ``DAGDEPLOY_`` prefixed environment variable with default."""
    return os.getenv(ENV_PREFIX + key, default)


def _getenv_int(key: str, default: int) -> int:
    """Get integer environment variable with validation.

    Raises:
        ConfigurationError: If value cannot be parsed as integer
    """
    value = os.getenv(ENV_PREFIX + key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid integer value for {ENV_PREFIX}{key}='{value}'", [key.lower()]
        ) from e


def _getenv_float(key: str, default: float) -> float:
    """Get float environment variable with validation.

    Raises:
        ConfigurationError: If value cannot be parsed as float
    """
    value = os.getenv(ENV_PREFIX + key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid float value for {ENV_PREFIX}{key}='{value}'", [key.lower()]
        ) from e


def load_environment(search_paths: Optional[List[Path]] = None) -> Optional[Path]:
    """Load the first .env file found without overriding the real environment.

    Returns:
        Path of the loaded file, or None if none was found
    """
    env_paths = search_paths or [Path(".env"), Path("../.env"), Path.home() / ".env"]
    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded environment from {env_path}")
            return env_path
    return None


@dataclass
class Config:
    """Deployment configuration loaded from environment variables."""

    # ========== Composer Environment ==========
    name: str = field(default_factory=lambda: _getenv("NAME"))
    location: str = field(default_factory=lambda: _getenv("LOCATION"))
    project: str = field(default_factory=lambda: _getenv("PROJECT"))
    dag_bucket_prefix: str = field(default_factory=lambda: _getenv("DAG_BUCKET_PREFIX"))
    airflow_version: int = field(default_factory=lambda: _getenv_int("AIRFLOW_VERSION", 2))
    monitoring_dag: str = field(default_factory=lambda: _getenv("MONITORING_DAG", "airflow_monitoring"))
    gcloud_binary: str = field(default_factory=lambda: _getenv("GCLOUD_BINARY", "gcloud"))

    # ========== Paths ==========
    dag_list: str = field(default_factory=lambda: _getenv("DAG_LIST", "./config/running_dags.txt"))
    dags_dir: str = field(default_factory=lambda: _getenv("DAGS_DIR", "./dags"))
    plugins_dir: str = field(default_factory=lambda: _getenv("PLUGINS_DIR"))
    data_dir: str = field(default_factory=lambda: _getenv("DATA_DIR"))
    variables_file: str = field(default_factory=lambda: _getenv("VARIABLES_FILE"))
    connections_file: str = field(default_factory=lambda: _getenv("CONNECTIONS_FILE"))

    # ========== Concurrency & Timeouts ==========
    max_workers: int = field(default_factory=lambda: _getenv_int("MAX_WORKERS", 0))
    command_timeout: float = field(default_factory=lambda: _getenv_float("COMMAND_TIMEOUT", 600.0))
    storage_timeout: float = field(default_factory=lambda: _getenv_float("STORAGE_TIMEOUT", 50.0))

    # ========== Retry Settings ==========
    stop_retry_attempts: int = field(default_factory=lambda: _getenv_int("STOP_RETRY_ATTEMPTS", 5))
    stop_retry_delay: float = field(default_factory=lambda: _getenv_float("STOP_RETRY_DELAY", 5.0))
    unpause_retry_attempts: int = field(default_factory=lambda: _getenv_int("UNPAUSE_RETRY_ATTEMPTS", 5))
    unpause_retry_delay: float = field(default_factory=lambda: _getenv_float("UNPAUSE_RETRY_DELAY", 60.0))
    unpause_retry_jitter: float = field(default_factory=lambda: _getenv_float("UNPAUSE_RETRY_JITTER", 0.10))

    # ========== Loop Mode ==========
    loop: bool = field(default_factory=lambda: _parse_bool(_getenv("LOOP", "false")))
    loop_interval: float = field(default_factory=lambda: _getenv_float("LOOP_INTERVAL", 60.0))

    # ========== Logging ==========
    log_level: str = field(default_factory=lambda: _getenv("LOG_LEVEL", "INFO").upper())
    log_file: Optional[str] = field(default_factory=lambda: _getenv("LOG_FILE") or None)

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with CLI overrides applied. ``None`` values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}", sorted(unknown))
        return dataclasses.replace(self, **changes)

    def validate(self) -> None:
        """Check required settings before any reconciliation begins.

        Raises:
            ConfigurationError: Naming every empty or invalid field
        """
        problems: List[str] = []
        missing = [name for name in REQUIRED_FIELDS if not str(getattr(self, name) or "").strip()]
        for name in missing:
            problems.append(f"{name} must not be empty")

        if self.dags_dir and not Path(self.dags_dir).is_dir():
            problems.append(f"dags_dir {self.dags_dir} is not a directory")
            missing.append("dags_dir")
        if self.dag_list and not Path(self.dag_list).is_file():
            problems.append(f"dag_list {self.dag_list} is not a file")
            missing.append("dag_list")
        if self.airflow_version not in (1, 2):
            problems.append(f"airflow_version must be 1 or 2, got {self.airflow_version}")
            missing.append("airflow_version")
        if self.max_workers < 0:
            problems.append("max_workers must be >= 0")
            missing.append("max_workers")

        retry_policies = (
            (self.stop_retry_config, ["stop_retry_attempts", "stop_retry_delay"]),
            (
                self.unpause_retry_config,
                ["unpause_retry_attempts", "unpause_retry_delay", "unpause_retry_jitter"],
            ),
        )
        for build, fields in retry_policies:
            try:
                build()
            except ValueError as e:
                problems.append(f"invalid retry settings ({', '.join(fields)}): {e}")
                missing.extend(fields)

        if problems:
            raise ConfigurationError("; ".join(problems), sorted(set(missing)))

    def stop_retry_config(self) -> RetryConfig:
        """Retry policy for purging DAG metadata during the stop phase."""
        return RetryConfig.fixed(self.stop_retry_attempts, self.stop_retry_delay)

    def unpause_retry_config(self) -> RetryConfig:
        """Retry policy for polling unpause during the start phase."""
        return RetryConfig.jittered(
            self.unpause_retry_attempts, self.unpause_retry_delay, self.unpause_retry_jitter
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return dataclasses.asdict(self)


__all__ = ["Config", "ENV_PREFIX", "REQUIRED_FIELDS", "load_environment"]
