"""Eligibility rules deciding whether a listing should be sent to a user."""

from dataclasses import dataclass
from typing import Optional

from ..models.listing import GLOBAL_GEOGRAPHY, Listing, ListingType
from ..models.user import User, UserPreferences


@dataclass
class EligibilityResult:
    """Outcome of every rule for one (user, listing) pair."""

    geography_match: bool
    type_match: bool
    min_value_match: bool
    max_value_match: bool
    skills_match: bool

    @property
    def eligible(self) -> bool:
        return (
            self.geography_match
            and self.type_match
            and self.min_value_match
            and self.max_value_match
            and self.skills_match
        )

    @property
    def failed_rules(self) -> list:
        return [name for name, passed in vars(self).items() if not passed]


class ValueFilter:
    """Handles the USD range rules."""

    def __init__(
        self, min_usd_value: Optional[float] = None, max_usd_value: Optional[float] = None
    ):
        self.min_usd_value = min_usd_value
        self.max_usd_value = max_usd_value

    def check_minimum(self, listing: Listing) -> bool:
        """Check the listing pays at least the user's minimum (inclusive)."""
        if self.min_usd_value is None:
            return True

        if listing.is_variable_comp:
            return True  # Not comparable, let it pass

        return listing.reward_usd >= self.min_usd_value

    def check_maximum(self, listing: Listing) -> bool:
        """Check the listing does not exceed the user's maximum.

        Ranged listings are only excluded when the cheapest payout already
        exceeds the cap; flat listings compare their single reward.
        """
        if self.max_usd_value is None:
            return True

        if listing.is_variable_comp:
            return True

        if listing.usd_range is not None:
            return not self.max_usd_value < listing.usd_range.min

        return not listing.reward_usd > self.max_usd_value


class EligibilityEvaluator:
    """Applies the geography, type, value and skill rules to a listing."""

    def evaluate(self, user: User, listing: Listing) -> EligibilityResult:
        """Evaluate every rule; never raises for missing optional fields."""
        prefs = user.preferences or UserPreferences()
        value_filter = ValueFilter(prefs.min_usd_value, prefs.max_usd_value)

        return EligibilityResult(
            geography_match=self._check_geography(prefs, listing),
            type_match=self._check_listing_type(prefs, listing),
            min_value_match=value_filter.check_minimum(listing),
            max_value_match=value_filter.check_maximum(listing),
            skills_match=self._check_skills(prefs, listing),
        )

    def is_eligible(self, user: User, listing: Listing) -> bool:
        return self.evaluate(user, listing).eligible

    def _check_geography(self, prefs: UserPreferences, listing: Listing) -> bool:
        user_geography = (prefs.geography or "").strip().lower()
        if not user_geography or user_geography == GLOBAL_GEOGRAPHY:
            return True

        if listing.is_open_globally:
            return True

        return user_geography in (g.lower() for g in listing.geographies or [])

    def _check_listing_type(self, prefs: UserPreferences, listing: Listing) -> bool:
        if prefs.notify_for_bounties is False and listing.listing_type == ListingType.BOUNTY:
            return False

        if prefs.notify_for_projects is False and listing.listing_type == ListingType.PROJECT:
            return False

        return True

    def _check_skills(self, prefs: UserPreferences, listing: Listing) -> bool:
        if not prefs.skills:
            return True

        listing_skills = set(listing.skills or [])
        return any(skill in listing_skills for skill in prefs.skills)


_default_evaluator = EligibilityEvaluator()


def is_eligible(user: User, listing: Listing) -> bool:
    """Whether ``listing`` should be delivered to ``user``."""
    return _default_evaluator.is_eligible(user, listing)
