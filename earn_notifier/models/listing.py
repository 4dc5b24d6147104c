"""
Listing data models for the Earn Notifier system.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional
from urllib.parse import urlparse

# Listings are only announced once they have been public for this long
DUE_AFTER = timedelta(hours=12)

GLOBAL_GEOGRAPHY = "global"


class ListingType(Enum):
    """Kinds of opportunities published on the listings board."""

    BOUNTY = "Bounty"
    PROJECT = "Project"


@dataclass
class UsdRange:
    """USD compensation range for projects without a fixed reward."""

    min: float
    max: float

    def validate(self) -> bool:
        """Validate range bounds."""
        if self.min < 0 or self.max < 0:
            raise ValueError("USD range bounds cannot be negative")

        if self.min > self.max:
            raise ValueError("USD range minimum cannot exceed maximum")

        return True


@dataclass
class Listing:
    """A bounty or project as delivered by a listing source."""

    id: str
    title: str
    sponsor_name: str
    listing_type: ListingType
    reward_usd: float
    skills: List[str]
    geographies: List[str]
    link: str
    deadline: str
    published_at: datetime
    reward_token_name: Optional[str] = None
    reward_value: Optional[float] = None
    usd_range: Optional[UsdRange] = None
    is_variable_comp: bool = False
    notified_at: Optional[datetime] = field(default=None, compare=False)

    def validate(self) -> bool:
        """Validate the listing data."""
        if not self.id or not self.id.strip():
            raise ValueError("Listing ID cannot be empty")

        if not self.title or not self.title.strip():
            raise ValueError("Listing title cannot be empty")

        if not isinstance(self.listing_type, ListingType):
            raise ValueError("listing_type must be a ListingType enum")

        if self.reward_usd is None or self.reward_usd < 0:
            raise ValueError("Reward USD must be a non-negative number")

        if self.reward_value is not None and self.reward_value < 0:
            raise ValueError("Reward value cannot be negative")

        if self.usd_range is not None:
            self.usd_range.validate()

        if not self.geographies:
            raise ValueError("Listing must be open to at least one geography")

        for skill in self.skills:
            if skill != skill.lower():
                raise ValueError(f"Skill tags must be lowercase: {skill}")

        parsed_url = urlparse(self.link)
        if not parsed_url.scheme or not parsed_url.netloc:
            raise ValueError(f"Invalid URL format: {self.link}")

        if self.published_at.tzinfo is None:
            raise ValueError("published_at must be timezone-aware")

        return True

    @property
    def is_open_globally(self) -> bool:
        return any(g.lower() == GLOBAL_GEOGRAPHY for g in self.geographies or [])

    def age(self, now: datetime) -> timedelta:
        """Time elapsed since the listing was published."""
        return now - self.published_at

    def is_due(self, now: datetime, due_after: timedelta = DUE_AFTER) -> bool:
        """Whether the listing is old enough and has not been announced yet."""
        return self.notified_at is None and self.age(now) >= due_after
