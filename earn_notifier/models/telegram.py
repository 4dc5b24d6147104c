"""
Telegram-specific data models for the Earn Notifier system.

This module defines the data structures exchanged between the Telegram
bot handler and the configuration wizard.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

# (label, callback_data)
InlineButton = Tuple[str, str]


@dataclass
class BotCommand:
    """Represents a parsed bot command."""

    command: str
    args: List[str]
    user_id: int
    chat_id: int
    raw_text: str

    def validate(self) -> bool:
        """Validate command structure."""
        valid_commands = [
            "start",
            "help",
            "configure",
            "myconfig",
            "cancel",
        ]
        return (
            self.command in valid_commands
            and isinstance(self.args, list)
            and isinstance(self.user_id, int)
            and isinstance(self.chat_id, int)
        )


@dataclass
class CommandResult:
    """Reply produced for a command, wizard answer or button press."""

    success: bool
    message: str
    buttons: List[List[InlineButton]] = field(default_factory=list)
    # Replaces the text of the message carrying the pressed button
    edit_text: Optional[str] = None

    def validate(self) -> bool:
        """Validate command result."""
        return (
            isinstance(self.success, bool)
            and isinstance(self.message, str)
            and bool(self.message.strip())
        )
