"""
Message formatting component for the Earn Notifier system.

This module renders a listing into the notification body sent to users.
Emphasis uses Telegram Markdown ``*bold*`` markers.
"""

from typing import Optional
from urllib.parse import urlencode

from ..models.listing import Listing

DEFAULT_UTM_SOURCE = "telegrambot"
NO_SKILLS_PLACEHOLDER = "N/A"
VARIABLE_COMP_LABEL = "Variable Comp"


def format_amount(value: float) -> str:
    """Render an amount without a trailing ``.0`` for whole numbers."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


class ListingMessageFormatter:
    """Formats listings into notification messages."""

    def __init__(self, utm_source: Optional[str] = DEFAULT_UTM_SOURCE):
        """
        Initialize the formatter.

        Args:
            utm_source: Tracking source appended to listing links, or None
                to leave links untouched
        """
        self.utm_source = utm_source

    def format(self, listing: Listing) -> str:
        """
        Format a listing into a notification message.

        Args:
            listing: The listing to format

        Returns:
            Message text ready for delivery
        """
        skills = ", ".join(listing.skills) if listing.skills else NO_SKILLS_PLACEHOLDER

        lines = [
            "📢 *New Opportunity on Superteam Earn!* 📢",
            "",
            f"*Title:* {listing.title}",
            f"*Sponsor:* {listing.sponsor_name}",
            f"*Type:* {listing.listing_type.value}",
            f"*Reward:* {self.format_reward(listing)}",
            f"*Deadline:* {listing.deadline}",
            f"*Skills:* {skills}",
            "",
            f"🔗 *View Listing:* {self.tracked_link(listing.link)}",
        ]
        return "\n".join(lines)

    def format_reward(self, listing: Listing) -> str:
        """Pick the reward description; the first matching rule wins."""
        if listing.is_variable_comp:
            return VARIABLE_COMP_LABEL

        if listing.usd_range is not None:
            return (
                f"${format_amount(listing.usd_range.min)} - "
                f"${format_amount(listing.usd_range.max)} USD"
            )

        if listing.reward_token_name and listing.reward_value is not None:
            return (
                f"{format_amount(listing.reward_value)} {listing.reward_token_name} "
                f"(~${format_amount(listing.reward_usd)} USD)"
            )

        return f"${format_amount(listing.reward_usd)} USD"

    def tracked_link(self, link: str) -> str:
        """Append the tracking query parameter to a listing link."""
        if not self.utm_source:
            return link

        separator = "&" if "?" in link else "?"
        return f"{link}{separator}{urlencode({'utm_source': self.utm_source})}"


_default_formatter = ListingMessageFormatter()


def format_listing_message(listing: Listing) -> str:
    """Render ``listing`` with the default tracking suffix."""
    return _default_formatter.format(listing)
