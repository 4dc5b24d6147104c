"""
Data models for the Earn Notifier system.

This module contains all data classes and type definitions used throughout
the application for representing listings, users, configuration, and
scheduler state.
"""

from .config import (
    Configuration,
    ListingSourceConfig,
    LoggingConfig,
    NotificationConfig,
    TelegramConfig,
)
from .delivery import DeliveryResult
from .listing import DUE_AFTER, Listing, ListingType, UsdRange
from .telegram import BotCommand, CommandResult
from .tick import ListingOutcome, TickSummary
from .user import User, UserPreferences

__all__ = [
    "DUE_AFTER",
    "Listing",
    "ListingType",
    "UsdRange",
    "User",
    "UserPreferences",
    "DeliveryResult",
    "ListingOutcome",
    "TickSummary",
    "BotCommand",
    "CommandResult",
    "Configuration",
    "TelegramConfig",
    "NotificationConfig",
    "ListingSourceConfig",
    "LoggingConfig",
]
