"""
Configuration Management System for the Explore Statistics Core

This module provides centralized configuration management for the Explore
(EXAMINE) pipeline, including analysis defaults, numeric display precision,
logging configuration, and runtime options.

Usage:
    from config import CONFIG

    # Access config
    print(CONFIG.get('analysis.trim_percent'))

    # Update config (runtime)
    CONFIG.update('analysis.extreme_count', 10)

    # Get with default
    value = CONFIG.get('some.nested.key', default='default_value')
"""

import copy
import json
import os
import warnings
from typing import Any, Dict, Optional


class ConfigManager:
    """
    Settings for one Explore process, addressed as ``"section.key"``.

    The defaults cover the analysis constants (trim percent, percentile
    points, extreme count, task timeout), display precision, logging,
    the worker pool and the validation switches. ``EXPLORE_*`` environment
    variables override any existing key at construction time.
    """

    def __init__(self, config_dict: Optional[Dict] = None):
        """
        Parameters:
            config_dict (dict | None): Settings tree to start from instead of
                the built-in Explore defaults. Environment overrides are applied
                on top in both cases.
        """
        self._config = config_dict or self._get_default_config()
        self._env_prefix = "EXPLORE_"
        self._load_env_overrides()

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """
        Provide the default nested configuration used by the Explore core.

        Returns:
            Dict[str, Any]: A dictionary with the default configuration sections
            ('analysis', 'formatting', 'logging', 'performance', 'validation')
            and their corresponding default settings.
        """
        return {

            # ========== ANALYSIS SETTINGS ==========
            "analysis": {
                # Descriptives
                "trim_percent": 5,  # Trimmed mean cuts this percent from each tail

                # Percentiles (weighted average, Definition 1)
                "percentile_points": [5, 10, 25, 50, 75, 90, 95],

                # Extreme values
                "extreme_count": 5,  # Highest/lowest values listed per group

                # Per-task ceiling on the numeric service call, in seconds
                "task_timeout": 30.0,
            },

            # ========== DISPLAY PRECISION ==========
            "formatting": {
                "default_decimals": 2,
                "percent_decimals": 1,
                "field_decimals": {
                    "std_error": 3,
                    "skewness": 3,
                    "kurtosis": 3,
                },
                "missing_text": "",
                "group_label_separator": ", ",
            },

            # ========== LOGGING SETTINGS ==========
            "logging": {
                "enabled": True,
                "level": "INFO",  # DEBUG, INFO, WARNING, ERROR, CRITICAL
                "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
                "date_format": "%Y-%m-%d %H:%M:%S",

                # File Logging
                "file_enabled": False,
                "log_dir": "logs",
                "log_file": "explore.log",
                "max_log_size": 10485760,  # 10MB in bytes
                "backup_count": 5,

                # Console Logging
                "console_enabled": True,
                "console_level": "WARNING",

                # What to Log
                "log_data_operations": True,
                "log_analysis_operations": True,
                "log_performance": True,  # Timing information
            },

            # ========== PERFORMANCE SETTINGS ==========
            "performance": {
                "num_threads": 4,  # Worker threads for the local examine service
            },

            # ========== VALIDATION SETTINGS ==========
            "validation": {
                "validate_inputs": True,
                "validate_tables": True,  # Check row-header depth on every table
            },
        }

    def _load_env_overrides(self) -> None:
        """
        Apply ``EXPLORE_<SECTION>_<KEY>`` variables to existing settings.

        The first name segment after the prefix picks the section and the rest
        is the key, so ``EXPLORE_ANALYSIS_TASK_TIMEOUT=5`` sets
        ``analysis.task_timeout`` to ``5.0``. Names that match no setting, or
        values that do not parse as the setting's type, are skipped with a
        warning.
        """
        for name, raw in os.environ.items():
            if not name.startswith(self._env_prefix):
                continue
            section, _, key_name = name[len(self._env_prefix):].lower().partition('_')
            if not section or not key_name:
                continue

            path = f"{section}.{key_name}"
            try:
                self.update(path, self._coerce_env_value(path, raw))
            except (KeyError, ValueError, TypeError) as e:
                warnings.warn(f"Ignoring {name}={raw}: {e}", stacklevel=2)

    def _coerce_env_value(self, path: str, raw: str) -> Any:
        """
        Parse an environment string as the type of the default at ``path``.

        Booleans accept 1/true/yes/on; percentile lists and other containers
        are read as JSON.

        Raises:
            ValueError: If the string cannot be parsed as the target type.
        """
        current = self.get(path)
        if isinstance(current, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
        if isinstance(current, (list, dict)):
            return json.loads(raw)
        return raw

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a setting such as ``"analysis.extreme_count"``.

        Returns ``default`` when any segment of the path is absent.
        """
        node: Any = self._config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def update(self, key: str, value: Any) -> None:
        """
        Replace an existing setting at runtime.

        Only keys present in the defaults can be set.

        Raises:
            KeyError: If the section or the key does not exist.
        """
        *parents, leaf = key.split('.')
        node = self._config
        for part in parents:
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Config section '{'.'.join(parents)}' does not exist")
            node = node[part]

        if not isinstance(node, dict) or leaf not in node:
            raise KeyError(f"Config key '{key}' does not exist")
        node[leaf] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Independent copy of one section, e.g. ``"formatting"``."""
        result = self.get(section, {})
        return copy.deepcopy(result) if isinstance(result, dict) else result

    def to_dict(self) -> Dict[str, Any]:
        """Independent copy of every setting, used to snapshot and restore CONFIG."""
        return copy.deepcopy(self._config)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate key configuration constraints and collect any violations.

        Performs a set of sanity checks on configuration values and records any problems found:
        - Ensures `analysis.trim_percent` lies in [0, 50).
        - Ensures `analysis.extreme_count` is a positive integer.
        - Ensures `analysis.task_timeout` is positive.
        - Ensures every percentile point lies in [0, 100].
        - Ensures `logging.level` is one of `['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']`.

        Returns:
            tuple: (is_valid, errors) where `is_valid` is `True` if no validation errors were found, `False` otherwise; `errors` is a list of human-readable error messages.
        """
        errors = []

        trim = self.get('analysis.trim_percent')
        if trim is None or not (0 <= trim < 50):
            errors.append("analysis.trim_percent must be in [0, 50)")

        count = self.get('analysis.extreme_count')
        if not isinstance(count, int) or count < 1:
            errors.append("analysis.extreme_count must be a positive integer")

        timeout = self.get('analysis.task_timeout')
        if timeout is None or timeout <= 0:
            errors.append("analysis.task_timeout must be positive")

        points = self.get('analysis.percentile_points') or []
        if any(not (0 <= p <= 100) for p in points):
            errors.append("analysis.percentile_points must lie in [0, 100]")

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.get('logging.level') not in valid_levels:
            errors.append(f"logging.level must be one of {valid_levels}")

        return len(errors) == 0, errors

    def __repr__(self) -> str:
        return f"ConfigManager({len(self._config)} sections)"


# Global config instance
CONFIG = ConfigManager()
