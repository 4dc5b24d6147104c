"""
Structured logging utilities for the Earn Notifier system.

This module configures the ``earn_notifier`` logger hierarchy with console
output, rotating log files and JSON-structured component loggers.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "earn_notifier"

# Components that get their own rotating log file
COMPONENT_LOG_FILES = [
    "scheduler",
    "telegram.bot",
    "orchestrator",
    "components.listing_source",
    "components.message_channel",
]


class ComponentLogger:
    """
    Structured logger for system components.

    Every message is emitted as a JSON document carrying the component name
    and any extra context, so log lines can be grepped or shipped as-is.
    """

    def __init__(
        self, component_name: str, extra_context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize component logger.

        Args:
            component_name: Name of the component (e.g., 'scheduler', 'telegram.bot')
            extra_context: Additional context to include in all log messages
        """
        self.component_name = component_name
        self.extra_context = extra_context or {}
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component_name}")

    def _format_message(
        self, message: str, extra: Optional[Dict[str, Any]] = None
    ) -> str:
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "component": self.component_name,
            "message": message,
            **self.extra_context,
        }

        if extra:
            log_data.update(extra)

        return json.dumps(log_data, default=str)

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._format_message(message, extra))

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.info(self._format_message(message, extra))

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._format_message(message, extra))

    def error(
        self,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
        exc_info: bool = False,
    ):
        self.logger.error(self._format_message(message, extra), exc_info=exc_info)

    def critical(
        self,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
        exc_info: bool = False,
    ):
        self.logger.critical(self._format_message(message, extra), exc_info=exc_info)


class LoggingManager:
    """
    Centralized logging configuration and management.

    Handles log file rotation, formatting, and component-specific loggers.
    """

    def __init__(self, log_dir: Optional[str] = "logs", log_level: str = "INFO"):
        """
        Initialize logging manager.

        Args:
            log_dir: Directory for log files, or None for console-only logging
            log_level: Default log level
        """
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_level = getattr(logging, log_level.upper())
        self.component_loggers: Dict[str, ComponentLogger] = {}

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_logging()

    def _setup_logging(self):
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(self.log_level)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        for component in COMPONENT_LOG_FILES:
            logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}").handlers.clear()

        if self.log_dir is None:
            return

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "earn_notifier.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        # Commit failures and unreachable recipients end up here
        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "errors.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)

        self._setup_component_loggers()

    def _setup_component_loggers(self):
        for component in COMPONENT_LOG_FILES:
            component_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")

            component_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / f"{component.replace('.', '_')}.log",
                maxBytes=5 * 1024 * 1024,  # 5MB
                backupCount=2,
            )
            component_handler.setLevel(self.log_level)
            component_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
            )
            component_logger.addHandler(component_handler)

    def get_component_logger(
        self, component_name: str, extra_context: Optional[Dict[str, Any]] = None
    ) -> ComponentLogger:
        """
        Get or create a component logger.

        Args:
            component_name: Name of the component
            extra_context: Additional context for all log messages

        Returns:
            ComponentLogger instance
        """
        cache_key = f"{component_name}_{hash(json.dumps(extra_context, sort_keys=True, default=str))}"

        if cache_key not in self.component_loggers:
            self.component_loggers[cache_key] = ComponentLogger(
                component_name, extra_context
            )

        return self.component_loggers[cache_key]

    def set_log_level(self, level: str):
        """Set log level for all loggers except the error file."""
        log_level = getattr(logging, level.upper())
        self.log_level = log_level

        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(log_level)

        for handler in root_logger.handlers:
            if "errors.log" in str(getattr(handler, "baseFilename", "")):
                continue
            handler.setLevel(log_level)


# Global logging manager instance
_logging_manager: Optional[LoggingManager] = None


def setup_logging(
    log_dir: Optional[str] = "logs", log_level: str = "INFO"
) -> LoggingManager:
    """
    Setup global logging configuration.

    Args:
        log_dir: Directory for log files, or None for console-only logging
        log_level: Default log level

    Returns:
        LoggingManager instance
    """
    global _logging_manager
    _logging_manager = LoggingManager(log_dir, log_level)
    return _logging_manager


def get_logger(
    component_name: str, extra_context: Optional[Dict[str, Any]] = None
) -> ComponentLogger:
    """
    Get a component logger.

    Logging falls back to console-only output when setup_logging() has not
    been called yet.
    """
    if _logging_manager is None:
        setup_logging(log_dir=None)

    return _logging_manager.get_component_logger(component_name, extra_context)
