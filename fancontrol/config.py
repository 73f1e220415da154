#!/usr/bin/env python3
"""
Configuration manager for the fan control tool.

Handles loading and accessing configuration from an optional YAML file.
Every key has a default so the tool runs without any file at all.
"""

import os
from typing import Any, Optional

import yaml


class ConfigManager:
    """
    Manages loading and accessing configuration from YAML file.
    Supports reloading configuration at runtime.
    """

    _instance = None

    def __new__(cls, config_path=None):
        """Singleton pattern to ensure only one config instance exists."""
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path=None):
        """Initialize the configuration manager with a config file path."""
        if self._initialized:
            return

        self.config_path = config_path
        self._config = {}

        if config_path:
            self.reload()

        self._initialized = True

    def reload(self) -> None:
        """Reload configuration from YAML file."""
        if not self.config_path or not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Error loading configuration: {str(e)}")

        if not isinstance(loaded, dict):
            raise ValueError(f"Error loading configuration: expected a mapping in {self.config_path}")
        self._config = loaded

    @property
    def poll_interval(self) -> float:
        """Seconds between worker poll cycles."""
        return float(self._config.get("poll_interval", 1.5))

    @property
    def log_file(self) -> Optional[str]:
        """Optional log file in addition to stderr."""
        return self._config.get("log_file")

    @property
    def hwmon_base(self) -> str:
        """Root of the hwmon sysfs tree."""
        return self._config.get("hwmon_base", "/sys/class/hwmon")

    @property
    def powershell(self) -> str:
        """Interpreter used for firmware method calls."""
        return self._config.get("powershell", "powershell.exe")

    @property
    def subprocess_timeout(self) -> Optional[float]:
        """Upper bound for one helper call in seconds. None waits forever."""
        value = self._config.get("subprocess_timeout")
        return float(value) if value is not None else None

    @property
    def default_min_rpm(self) -> int:
        """Fallback minimum RPM when the firmware exposes no table data."""
        return int(self._config.get("default_min_rpm", 1600))

    @property
    def default_max_rpm(self) -> int:
        """Fallback maximum RPM when the firmware exposes no table data."""
        return int(self._config.get("default_max_rpm", 4800))

    @property
    def curve_table_length(self) -> int:
        """Number of entries in the firmware curve table."""
        return int(self._config.get("curve_table_length", 10))

    @property
    def firmware_revision(self) -> str:
        """Curve buffer layout to use when writing curves."""
        return self._config.get("firmware_revision", "v1")

    @property
    def backup_path(self) -> str:
        """Default file for backup-curves and restore-curves."""
        return self._config.get("backup_path", "fan_curves.json")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key."""
        return self._config.get(key, default)
