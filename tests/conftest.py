"""
Pytest configuration and shared fixtures.

This module provides common fixtures and configuration for all tests
in the Earn Notifier test suite.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from earn_notifier.models.config import (
    Configuration,
    ListingSourceConfig,
    LoggingConfig,
    NotificationConfig,
    TelegramConfig,
)
from earn_notifier.models.delivery import DeliveryResult
from earn_notifier.models.listing import Listing, ListingType, UsdRange
from earn_notifier.models.user import User, UserPreferences

NOW = datetime(2024, 7, 1, 12, 0, 0, tzinfo=timezone.utc)


def build_listing(
    listing_id: str = "1",
    listing_type: ListingType = ListingType.BOUNTY,
    reward_usd: float = 1000.0,
    skills=None,
    geographies=None,
    hours_old: float = 15,
    usd_range=None,
    is_variable_comp: bool = False,
    **overrides,
) -> Listing:
    """Create a Listing with sensible defaults."""
    fields = dict(
        id=listing_id,
        title=f"Listing {listing_id}",
        sponsor_name="Solana Foundation",
        listing_type=listing_type,
        reward_usd=reward_usd,
        skills=list(skills) if skills is not None else ["typescript", "telegram-api"],
        geographies=list(geographies) if geographies is not None else ["Global"],
        link=f"https://earn.superteam.fun/listings/{listing_id}",
        deadline="2024-08-01",
        published_at=NOW - timedelta(hours=hours_old),
        usd_range=usd_range,
        is_variable_comp=is_variable_comp,
    )
    fields.update(overrides)
    return Listing(**fields)


def build_user(user_id: int = 1001, configured: bool = True, **preferences) -> User:
    """Create a User with the given preference overrides."""
    return User(
        id=user_id,
        preferences=UserPreferences(**preferences),
        is_configured=configured,
    )


@pytest.fixture
def now():
    """Fixed reference time used as the clock in tests."""
    return NOW


@pytest.fixture
def clock():
    """Clock callable returning the fixed reference time."""
    return lambda: NOW


@pytest.fixture
def sample_listing():
    """Create a due Bounty open to everyone."""
    return build_listing()


@pytest.fixture
def ranged_listing():
    """Create a due Project paying within a USD range."""
    return build_listing(
        listing_id="2",
        listing_type=ListingType.PROJECT,
        reward_usd=2000.0,
        usd_range=UsdRange(min=2000.0, max=5000.0),
        skills=["rust", "solana", "react"],
        geographies=["Vietnam", "India"],
        hours_old=20,
    )


@pytest.fixture
def sample_user():
    """Create a configured user with default preferences."""
    return build_user()


@pytest.fixture
def sample_configuration():
    """Create a sample Configuration for testing."""
    return Configuration(
        telegram=TelegramConfig(bot_token="123456:test-token"),
        notifications=NotificationConfig(),
        listing_source=ListingSourceConfig(type="mock"),
        logging=LoggingConfig(level="INFO", log_dir="logs"),
    )


@pytest.fixture
def successful_delivery():
    """Create a successful DeliveryResult."""
    return DeliveryResult(success=True, delivery_time=NOW, error_message=None)


@pytest.fixture
def mock_channel():
    """Message channel whose sends all succeed."""
    channel = AsyncMock()

    async def send(user_id, text):
        return DeliveryResult(
            success=True, delivery_time=NOW, error_message=None, recipient_id=user_id
        )

    channel.send_message.side_effect = send
    channel.test_connection.return_value = True
    return channel
