"""
User and notification preference models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


@dataclass
class UserPreferences:
    """Notification filters chosen by a user in the configuration wizard."""

    geography: Optional[str] = "Global"
    notify_for_bounties: Optional[bool] = True
    notify_for_projects: Optional[bool] = True
    min_usd_value: Optional[float] = None
    max_usd_value: Optional[float] = None
    skills: List[str] = field(default_factory=list)

    def validate(self) -> bool:
        """Validate preference values."""
        if self.min_usd_value is not None and self.min_usd_value < 0:
            raise ValueError("Minimum USD value cannot be negative")

        if self.max_usd_value is not None and self.max_usd_value < 0:
            raise ValueError("Maximum USD value cannot be negative")

        if (
            self.min_usd_value is not None
            and self.max_usd_value is not None
            and self.min_usd_value > self.max_usd_value
        ):
            raise ValueError("Minimum USD value cannot exceed maximum USD value")

        if not isinstance(self.skills, list):
            raise ValueError("Skills must be a list")

        for skill in self.skills:
            if not isinstance(skill, str) or not skill.strip():
                raise ValueError("All skills must be non-empty strings")

        if self.geography is not None and len(self.geography) > 100:
            raise ValueError("Geography too long (max 100 characters)")

        return True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """A chat user known to the bot."""

    id: int
    preferences: UserPreferences = field(default_factory=UserPreferences)
    is_configured: bool = False
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def can_receive_notifications(self) -> bool:
        return self.is_configured and self.is_active
