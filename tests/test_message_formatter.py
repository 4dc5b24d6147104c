"""
Unit tests for the listing message formatter.
"""

import pytest

from earn_notifier.components.message_formatter import (
    ListingMessageFormatter,
    format_amount,
    format_listing_message,
)
from earn_notifier.models.listing import ListingType, UsdRange

from conftest import build_listing


class TestFormatAmount:
    """Test cases for amount rendering."""

    @pytest.mark.parametrize(
        "value, expected", [(1000, "1000"), (1000.0, "1000"), (12.5, "12.50"), (0, "0")]
    )
    def test_format_amount(self, value, expected):
        """Test whole amounts drop decimals and fractional ones keep two."""
        assert format_amount(value) == expected


class TestListingMessageFormatter:
    """Test cases for ListingMessageFormatter."""

    def setup_method(self):
        self.formatter = ListingMessageFormatter()

    def test_full_message(self):
        """Test the complete notification body for a token reward."""
        listing = build_listing(
            listing_id="1",
            reward_usd=1000,
            reward_token_name="USDC",
            reward_value=1000,
            skills=["typescript", "telegram-api", "nodejs"],
            title="Build a Telegram Bot",
        )

        message = self.formatter.format(listing)

        assert message.splitlines() == [
            "📢 *New Opportunity on Superteam Earn!* 📢",
            "",
            "*Title:* Build a Telegram Bot",
            "*Sponsor:* Solana Foundation",
            "*Type:* Bounty",
            "*Reward:* 1000 USDC (~$1000 USD)",
            "*Deadline:* 2024-08-01",
            "*Skills:* typescript, telegram-api, nodejs",
            "",
            "🔗 *View Listing:* https://earn.superteam.fun/listings/1?utm_source=telegrambot",
        ]

    def test_variable_comp_wins(self):
        """Test that variable compensation takes precedence over other rewards."""
        listing = build_listing(
            is_variable_comp=True,
            usd_range=UsdRange(min=100, max=200),
            reward_token_name="USDC",
            reward_value=50,
        )
        assert self.formatter.format_reward(listing) == "Variable Comp"

    def test_range_reward(self):
        """Test that ranged rewards render both bounds."""
        listing = build_listing(
            listing_type=ListingType.PROJECT,
            reward_usd=2000,
            usd_range=UsdRange(min=2000, max=5000),
        )
        assert self.formatter.format_reward(listing) == "$2000 - $5000 USD"

    def test_token_without_value_falls_back_to_usd(self):
        """Test that a token name without an amount renders the USD value."""
        listing = build_listing(reward_usd=300, reward_token_name="USDC")
        assert self.formatter.format_reward(listing) == "$300 USD"

    def test_usd_only_reward(self):
        """Test plain USD rewards."""
        assert self.formatter.format_reward(build_listing(reward_usd=750.5)) == "$750.50 USD"

    def test_empty_skills_placeholder(self):
        """Test that listings without skills show N/A."""
        message = self.formatter.format(build_listing(skills=[]))
        assert "*Skills:* N/A" in message

    def test_link_with_existing_query(self):
        """Test that the tracking parameter joins an existing query string."""
        link = self.formatter.tracked_link("https://earn.superteam.fun/listings/1?ref=abc")
        assert link == "https://earn.superteam.fun/listings/1?ref=abc&utm_source=telegrambot"

    def test_custom_utm_source(self):
        """Test a configured tracking source."""
        formatter = ListingMessageFormatter(utm_source="my bot")
        assert formatter.tracked_link("https://x.io/l") == "https://x.io/l?utm_source=my+bot"

    def test_tracking_disabled(self):
        """Test that links are untouched without a tracking source."""
        formatter = ListingMessageFormatter(utm_source=None)
        assert formatter.tracked_link("https://x.io/l") == "https://x.io/l"

    def test_module_level_formatter(self, sample_listing):
        """Test the default formatter function."""
        assert format_listing_message(sample_listing) == self.formatter.format(sample_listing)
