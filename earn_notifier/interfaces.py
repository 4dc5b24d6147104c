"""
Protocol interfaces for the Earn Notifier system.

This module defines the protocol interfaces that establish system
boundaries and let the scheduler run against any listing source,
preference store or messaging channel.
"""

from typing import TYPE_CHECKING, List, Optional, Protocol

from .models.delivery import DeliveryResult
from .models.listing import Listing
from .models.user import User, UserPreferences

if TYPE_CHECKING:
    from .models.config import Configuration
    from .models.telegram import BotCommand, CommandResult


class IListingSource(Protocol):
    """Protocol for listing sources the scheduler polls."""

    def fetch_due_listings(self) -> List[Listing]:
        """Return listings at least 12 hours old and not yet notified, oldest first."""
        ...

    def mark_notified(self, listing_id: str) -> bool:
        """Record that the notification pass for a listing has completed."""
        ...


class IPreferenceStore(Protocol):
    """Protocol for storing user notification preferences."""

    def get_user(self, user_id: int) -> Optional[User]:
        """Look up a user."""
        ...

    def get_or_create_user(self, user_id: int) -> User:
        """Return the user, creating one with default preferences on first contact."""
        ...

    def apply_preferences(self, user_id: int, preferences: UserPreferences) -> User:
        """Replace a user's preferences and mark them configured."""
        ...

    def get_configured_users(self) -> List[User]:
        """Return users that completed configuration and are still reachable."""
        ...

    def get_all_users(self) -> List[User]:
        """Return every known user."""
        ...

    def deactivate_user(self, user_id: int) -> bool:
        """Stop notifying a user until they configure again."""
        ...

    def reactivate_user(self, user_id: int) -> bool:
        """Resume notifications for a previously deactivated user."""
        ...


class IMessageChannel(Protocol):
    """Protocol for delivering notification text to a user."""

    async def send_message(self, user_id: int, text: str) -> DeliveryResult:
        """Send a message; failures are reported in the result."""
        ...

    async def test_connection(self) -> bool:
        """Test connection to the messaging platform."""
        ...


class ICommandProcessor(Protocol):
    """Protocol for processing bot commands and wizard input."""

    async def process_command(self, command: "BotCommand") -> "CommandResult":
        """Process a bot command and return result."""
        ...

    async def handle_text(self, chat_id: int, text: str) -> Optional["CommandResult"]:
        """Process a free-text answer; None when no wizard is in progress."""
        ...

    async def handle_callback(self, chat_id: int, data: str) -> "CommandResult":
        """Process an inline keyboard button press."""
        ...


class IConfigurationManager(Protocol):
    """Protocol for managing system configuration."""

    def load_config(self) -> "Configuration":
        """Load configuration from file."""
        ...

    def get_config(self) -> "Configuration":
        """Get current configuration, loading if necessary."""
        ...

    def reload_if_changed(self) -> bool:
        """Reload configuration if the file changed."""
        ...
