# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for the outline context cache."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from outline_context.keys import DEFAULT_CACHE_SUFFIX
from outline_context.summarizer import DEFAULT_MODEL, DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = ".outline_context.yml"


class ConfigurationError(Exception):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for the outline context cache.

    Loads configuration from .outline_context.yml with validation and defaults.
    """

    DEFAULTS = {
        "auto_update": True,
        "enable_context_injection": True,
        "prefer_summary_tag": "ctx_summary",
        "prefer_files_tag": "ctx_files",
        "cache_file_suffix": DEFAULT_CACHE_SUFFIX,
        "attachment_dir": "data",
        "binary_probe_bytes": 1024,
        "max_file_size_kb": 1024,
        "summary_model": DEFAULT_MODEL,
        "summary_max_tokens": 1024,
        "summary_timeout_seconds": 120,
        "summary_system_prompt": DEFAULT_SYSTEM_PROMPT,
        "update_gitignore": False,
        "enable_event_logging": True,
    }

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses default location.
        """
        if config_path is None:
            config_path = Path.cwd() / DEFAULT_CONFIG_FILENAME

        self.config_path = config_path
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        if not self.config_path.exists():
            logger.info(f"Configuration file not found at {self.config_path}, using defaults")
            self._config = self.DEFAULTS.copy()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)

            if loaded_config is None:
                logger.warning("Configuration file is empty, using defaults")
                self._config = self.DEFAULTS.copy()
                return

            if not isinstance(loaded_config, dict):
                logger.warning(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(loaded_config)}, using defaults"
                )
                self._config = self.DEFAULTS.copy()
                return

            self._config = self.DEFAULTS.copy()
            self._validate_and_merge(loaded_config)

        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()
        except OSError as e:
            logger.warning(
                f"Error reading configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge with defaults.

        Invalid parameters are logged as warnings and defaults are used.
        """
        for key, value in loaded_config.items():
            if key not in self.DEFAULTS:
                logger.warning(f"Unknown configuration parameter '{key}', ignoring")
                continue

            if not self._validate_parameter(key, value):
                logger.warning(
                    f"Invalid value for '{key}': {value!r}, using default {self.DEFAULTS[key]!r}"
                )
                continue

            self._config[key] = value

    def _validate_parameter(self, key: str, value: Any) -> bool:
        """Validate a configuration parameter.

        Returns:
            True if valid, False if invalid
        """
        expected_type = type(self.DEFAULTS[key])
        # bool is an int subclass; keep flags and numbers apart
        if isinstance(value, bool) != (expected_type is bool):
            return False
        if not isinstance(value, expected_type):
            return False

        if key in (
            "binary_probe_bytes",
            "max_file_size_kb",
            "summary_max_tokens",
            "summary_timeout_seconds",
        ):
            return value > 0
        elif key in ("prefer_summary_tag", "prefer_files_tag"):
            return bool(value) and ":" not in value and not any(c.isspace() for c in value)
        elif key == "cache_file_suffix":
            return bool(value) and "/" not in value and "\\" not in value
        elif key in ("summary_model", "summary_system_prompt"):
            return bool(value.strip())
        elif key == "attachment_dir":
            return "\0" not in value

        return True

    # Property accessors for all configuration values
    @property
    def auto_update(self) -> bool:
        """Whether a stale entry for the current section is rebuilt on read."""
        value = self._config["auto_update"]
        assert isinstance(value, bool)
        return value

    @property
    def enable_context_injection(self) -> bool:
        """Whether the request transform is registered at startup."""
        value = self._config["enable_context_injection"]
        assert isinstance(value, bool)
        return value

    @property
    def prefer_summary_tag(self) -> str:
        """Tag that restricts resolution to summary entries."""
        value = self._config["prefer_summary_tag"]
        assert isinstance(value, str)
        return value

    @property
    def prefer_files_tag(self) -> str:
        """Tag that restricts resolution to file entries (unless the summary tag is present)."""
        value = self._config["prefer_files_tag"]
        assert isinstance(value, str)
        return value

    @property
    def cache_file_suffix(self) -> str:
        """Suffix inserted before the extension of the source document's name."""
        value = self._config["cache_file_suffix"]
        assert isinstance(value, str)
        return value

    @property
    def attachment_dir(self) -> str:
        """Directory for attachment: links, relative to the document directory."""
        value = self._config["attachment_dir"]
        assert isinstance(value, str)
        return value

    @property
    def binary_probe_bytes(self) -> int:
        """Bytes read from the start of a file to detect binary content."""
        value = self._config["binary_probe_bytes"]
        assert isinstance(value, int)
        return value

    @property
    def max_file_size_kb(self) -> int:
        """Linked files above this size are left out of built content."""
        value = self._config["max_file_size_kb"]
        assert isinstance(value, int)
        return value

    @property
    def summary_model(self) -> str:
        """Model used for summary entries."""
        value = self._config["summary_model"]
        assert isinstance(value, str)
        return value

    @property
    def summary_max_tokens(self) -> int:
        """Maximum tokens in a generated summary."""
        value = self._config["summary_max_tokens"]
        assert isinstance(value, int)
        return value

    @property
    def summary_timeout_seconds(self) -> int:
        """Upper bound on a single summarization call."""
        value = self._config["summary_timeout_seconds"]
        assert isinstance(value, int)
        return value

    @property
    def summary_system_prompt(self) -> str:
        """System prompt sent with every summarization."""
        value = self._config["summary_system_prompt"]
        assert isinstance(value, str)
        return value

    @property
    def update_gitignore(self) -> bool:
        """Whether new cache files are added to a sibling .gitignore."""
        value = self._config["update_gitignore"]
        assert isinstance(value, bool)
        return value

    @property
    def enable_event_logging(self) -> bool:
        """Whether context events are written to the JSONL event log."""
        value = self._config["enable_event_logging"]
        assert isinstance(value, bool)
        return value
