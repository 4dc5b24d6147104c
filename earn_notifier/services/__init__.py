"""
Service layer for the Earn Notifier system.

This module contains the configuration manager and the store holding
users and their notification preferences.
"""

from .config_manager import ConfigurationManager
from .preference_store import InMemoryPreferenceStore

__all__ = [
    "ConfigurationManager",
    "InMemoryPreferenceStore",
]
