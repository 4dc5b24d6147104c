"""
Core components for the Earn Notifier system.

This module contains the components that fetch and parse listings, decide
eligibility, format and deliver notifications, schedule the notification
loop and run the Telegram configuration wizard.
"""

from .configuration_wizard import ConfigurationWizard
from .eligibility import EligibilityEvaluator, EligibilityResult, ValueFilter, is_eligible
from .listing_parser import ListingParseError, ListingParser
from .listing_source import (
    HttpListingSource,
    InMemoryListingSource,
    NotifiedListingTracker,
    create_listing_source,
)
from .message_formatter import ListingMessageFormatter, format_listing_message
from .notification_scheduler import NotificationScheduler

__all__ = [
    "ConfigurationWizard",
    "EligibilityEvaluator",
    "EligibilityResult",
    "ValueFilter",
    "is_eligible",
    "ListingParser",
    "ListingParseError",
    "InMemoryListingSource",
    "HttpListingSource",
    "NotifiedListingTracker",
    "create_listing_source",
    "ListingMessageFormatter",
    "format_listing_message",
    "NotificationScheduler",
]
