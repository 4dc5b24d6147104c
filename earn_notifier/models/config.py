"""
Configuration models for the system.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse


@dataclass
class TelegramConfig:
    """Configuration for the Telegram bot."""

    bot_token: str
    parse_mode: Optional[str] = "Markdown"

    def validate(self) -> bool:
        """Validate Telegram configuration."""
        if not self.bot_token or not self.bot_token.strip():
            raise ValueError("Telegram configuration must include 'bot_token'")

        if self.parse_mode not in (None, "Markdown", "MarkdownV2", "HTML"):
            raise ValueError(
                "Telegram parse_mode must be one of: Markdown, MarkdownV2, HTML"
            )

        return True


@dataclass
class NotificationConfig:
    """Scheduler and delivery settings."""

    polling_interval_minutes: float = 15
    due_after_hours: float = 12
    utm_source: str = "telegrambot"
    deactivate_unreachable_users: bool = True
    max_send_retries: int = 2

    def validate(self) -> bool:
        """Validate notification settings."""
        if (
            not isinstance(self.polling_interval_minutes, (int, float))
            or self.polling_interval_minutes <= 0
        ):
            raise ValueError("Polling interval must be a positive number of minutes")

        if (
            not isinstance(self.due_after_hours, (int, float))
            or self.due_after_hours <= 0
        ):
            raise ValueError("Due-after hours must be a positive number")

        if not isinstance(self.max_send_retries, int) or self.max_send_retries < 0:
            raise ValueError("Max send retries must be a non-negative integer")

        if self.max_send_retries > 10:
            raise ValueError("Max send retries cannot exceed 10")

        return True


@dataclass
class ListingSourceConfig:
    """Where listings come from."""

    type: str = "mock"  # "mock" or "http"
    listings_file: Optional[str] = None
    url: Optional[str] = None
    timeout: int = 30
    state_file: str = "data/notified_listings.json"

    def validate(self) -> bool:
        """Validate listing source configuration."""
        valid_types = ["mock", "http"]
        if self.type not in valid_types:
            raise ValueError(f"Listing source type must be one of: {valid_types}")

        if self.type == "http":
            if not self.url:
                raise ValueError("HTTP listing source requires 'url'")

            parsed_url = urlparse(self.url)
            if parsed_url.scheme not in ["http", "https"] or not parsed_url.netloc:
                raise ValueError(f"Listing source URL must use HTTP or HTTPS: {self.url}")

            if not self.state_file or not self.state_file.strip():
                raise ValueError("HTTP listing source requires 'state_file'")

        if not isinstance(self.timeout, int) or self.timeout <= 0:
            raise ValueError("Listing source timeout must be a positive integer")

        return True


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    log_dir: str = "logs"

    def validate(self) -> bool:
        """Validate logging settings."""
        if not isinstance(logging.getLevelName(self.level.upper()), int):
            raise ValueError(f"Invalid log level: {self.level}")

        if not self.log_dir or not self.log_dir.strip():
            raise ValueError("Log directory cannot be empty")

        return True


@dataclass
class Configuration:
    """System configuration."""

    telegram: TelegramConfig
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    listing_source: ListingSourceConfig = field(default_factory=ListingSourceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> bool:
        """Validate system configuration."""
        self.telegram.validate()
        self.notifications.validate()
        self.listing_source.validate()
        self.logging.validate()

        return True
