"""
Configuration management system for the Earn Notifier bot.
"""

import json
import os
from typing import Any, Dict, Optional

import yaml

from ..models.config import (
    Configuration,
    ListingSourceConfig,
    LoggingConfig,
    NotificationConfig,
    TelegramConfig,
)


class ConfigurationManager:
    """Manages loading, validation, and reloading of system configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file. If None, uses default paths.
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Configuration] = None
        self._last_modified: Optional[float] = None

    def _find_config_file(self) -> str:
        """Find the configuration file in standard locations."""
        possible_paths = [
            "config/config.yaml",
            "config/config.yml",
            "config/config.json",
            "config.yaml",
            "config.yml",
            "config.json",
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        if os.path.exists("config/config.example.yaml"):
            raise ValueError(
                "No configuration file found. Please copy 'config/config.example.yaml' "
                "to 'config/config.yaml' and customize it for your needs."
            )

        raise ValueError(
            "No configuration file found. Please create a configuration file "
            "at one of these locations: " + ", ".join(possible_paths)
        )

    def _read_raw_config(self, config_path: str) -> Dict[str, Any]:
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.endswith(".json"):
                raw_config = json.load(f)
            else:
                raw_config = yaml.safe_load(f)

        if not isinstance(raw_config, dict):
            raise ValueError("Configuration file must contain a mapping")
        return raw_config

    def load_config(self) -> Configuration:
        """
        Load configuration from file.

        Returns:
            Configuration object with validated settings.

        Raises:
            ValueError: If configuration is invalid or file cannot be read.
            FileNotFoundError: If configuration file doesn't exist.
        """
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            raw_config = self._read_raw_config(self.config_path)

            # Expand environment variables
            raw_config = self._expand_env_vars(raw_config)

            config = self._parse_config(raw_config)
            config.validate()

            self._config = config
            self._last_modified = os.path.getmtime(self.config_path)

            return config

        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")
        except Exception as e:
            raise ValueError(f"Error loading configuration: {e}")

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively expand environment variables in configuration."""
        if isinstance(obj, dict):
            return {key: self._expand_env_vars(value) for key, value in obj.items()}
        elif isinstance(obj, list):
            return [self._expand_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            # Expand ${VAR_NAME} patterns
            if obj.startswith("${") and obj.endswith("}"):
                var_name = obj[2:-1]
                env_value = os.getenv(var_name)
                if env_value is None:
                    raise ValueError(f"Environment variable '{var_name}' not found")
                return env_value
            return obj
        else:
            return obj

    def _parse_config(self, raw_config: Dict[str, Any]) -> Configuration:
        """Parse raw configuration dictionary into Configuration object."""
        try:
            telegram_data = raw_config.get("telegram") or {}
            telegram = TelegramConfig(
                bot_token=str(telegram_data.get("bot_token") or ""),
                parse_mode=telegram_data.get("parse_mode", "Markdown"),
            )

            notification_data = raw_config.get("notifications") or {}
            notifications = NotificationConfig(
                polling_interval_minutes=notification_data.get(
                    "polling_interval_minutes", 15
                ),
                due_after_hours=notification_data.get("due_after_hours", 12),
                utm_source=notification_data.get("utm_source", "telegrambot"),
                deactivate_unreachable_users=bool(
                    notification_data.get("deactivate_unreachable_users", True)
                ),
                max_send_retries=notification_data.get("max_send_retries", 2),
            )

            source_data = raw_config.get("listing_source") or {}
            listing_source = ListingSourceConfig(
                type=source_data.get("type", "mock"),
                listings_file=source_data.get("listings_file"),
                url=source_data.get("url"),
                timeout=source_data.get("timeout", 30),
                state_file=source_data.get("state_file", "data/notified_listings.json"),
            )

            logging_data = raw_config.get("logging") or {}
            logging_config = LoggingConfig(
                level=str(logging_data.get("level", "INFO")),
                log_dir=logging_data.get("log_dir", "logs"),
            )

            return Configuration(
                telegram=telegram,
                notifications=notifications,
                listing_source=listing_source,
                logging=logging_config,
            )

        except (AttributeError, TypeError) as e:
            raise ValueError(f"Error parsing configuration: {e}")

    def get_config(self) -> Configuration:
        """
        Get current configuration, loading if necessary.

        Returns:
            Current configuration object.
        """
        if self._config is None:
            return self.load_config()
        return self._config

    def reload_if_changed(self) -> bool:
        """
        Reload configuration if file has been modified.

        Returns:
            True if configuration was reloaded, False otherwise.
        """
        if not os.path.exists(self.config_path):
            return False

        current_modified = os.path.getmtime(self.config_path)

        if self._last_modified is None or current_modified > self._last_modified:
            try:
                self.load_config()
                return True
            except (ValueError, FileNotFoundError):
                # If reload fails, keep current config
                return False

        return False
