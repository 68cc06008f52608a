# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Configuration for the error tracker."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

import yaml

ENV_PREFIX = "ERROR_TRACKER_"

VALID_STORE_TYPES = {"inmemory", "mongodb"}
VALID_NOTIFIER_TYPES = {"log", "silent"}
VALID_LOG_TYPES = {"stdout", "silent"}
VALID_METRICS_BACKENDS = {"noop", "prometheus"}


class EnvConfigProvider:
    """Configuration provider that reads from environment variables."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str, default: Any = None) -> Any:
        return self._environ.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._environ.get(key)
        if value is None:
            return default

        value_lower = value.lower()
        if value_lower in ("true", "1", "yes", "on"):
            return True
        if value_lower in ("false", "0", "no", "off"):
            return False
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._environ.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self._environ.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            return default


@dataclass
class ErrorTrackerConfig:
    """Error tracker configuration."""
    flush_interval_seconds: float = 30.0
    shutdown_timeout_seconds: float = 10.0
    top_errors_limit: int = 10
    default_page_size: int = 20
    max_page_size: int = 100
    retention_days: int = 30
    echo_captures: bool = False
    store_type: str = "inmemory"  # "inmemory", "mongodb"
    mongo_host: str = "localhost"
    mongo_port: int = 27017
    mongo_database: str = "panel"
    mongo_collection: str = "error_logs"
    mongo_username: str | None = None
    mongo_password: str | None = None
    notifier_type: str = "log"  # "log", "silent"
    log_type: str = "stdout"
    log_level: str = "INFO"
    logger_name: str = "error-tracker"
    metrics_backend: str = "noop"
    http_port: int = 8082

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check value ranges and driver names.

        Raises:
            ValueError: If any setting is invalid
        """
        if self.flush_interval_seconds <= 0:
            raise ValueError("flush_interval_seconds must be positive")
        if self.shutdown_timeout_seconds <= 0:
            raise ValueError("shutdown_timeout_seconds must be positive")
        if self.top_errors_limit < 1:
            raise ValueError("top_errors_limit must be at least 1")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError("default_page_size must be between 1 and max_page_size")
        if self.retention_days < 0:
            raise ValueError("retention_days must be 0 or greater")
        if self.store_type not in VALID_STORE_TYPES:
            raise ValueError(f"store_type must be one of {sorted(VALID_STORE_TYPES)}")
        if self.notifier_type not in VALID_NOTIFIER_TYPES:
            raise ValueError(f"notifier_type must be one of {sorted(VALID_NOTIFIER_TYPES)}")
        if self.log_type not in VALID_LOG_TYPES:
            raise ValueError(f"log_type must be one of {sorted(VALID_LOG_TYPES)}")
        if self.metrics_backend not in VALID_METRICS_BACKENDS:
            raise ValueError(f"metrics_backend must be one of {sorted(VALID_METRICS_BACKENDS)}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ErrorTrackerConfig":
        """Load configuration from ``ERROR_TRACKER_*`` environment variables.

        Unset variables keep their defaults.
        """
        provider = EnvConfigProvider(environ)
        defaults = cls()
        values: dict[str, Any] = {}

        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            current = getattr(defaults, f.name)
            if isinstance(current, bool):
                values[f.name] = provider.get_bool(key, current)
            elif isinstance(current, int):
                values[f.name] = provider.get_int(key, current)
            elif isinstance(current, float):
                values[f.name] = provider.get_float(key, current)
            else:
                values[f.name] = provider.get(key, current)

        return cls(**values)

    @classmethod
    def from_yaml_file(cls, filepath: str, environ: Mapping[str, str] | None = None) -> "ErrorTrackerConfig":
        """Load environment configuration, then overlay values from a YAML file.

        The file may hold the settings at top level or under an
        ``error_tracker`` key. Unknown keys are rejected.
        """
        config = cls.from_env(environ)

        if not os.path.exists(filepath):
            return config

        with open(filepath, "r", encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError(f"Error tracker config file {filepath} must contain a mapping")
        section = yaml_config.get("error_tracker", yaml_config)
        if not isinstance(section, dict):
            raise ValueError(f"error_tracker section in {filepath} must be a mapping")
        known = {f.name for f in fields(cls)}
        unknown = set(section) - known
        if unknown:
            raise ValueError(f"Unknown error tracker settings: {sorted(unknown)}")

        merged = {name: getattr(config, name) for name in known}
        merged.update(section)
        return cls(**merged)
