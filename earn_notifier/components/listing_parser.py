"""
Listing parsing components for the Earn Notifier system.

This module turns loosely-typed listing records from an external source
into validated Listing objects. Records that cannot be converted are
dropped with a logged reason instead of being passed on half-populated.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser

from ..models.listing import Listing, ListingType, UsdRange

logger = logging.getLogger(__name__)


class ListingParseError(ValueError):
    """Raised when a listing record cannot be converted."""

    def __init__(self, listing_id: Optional[str], reason: str):
        self.listing_id = listing_id
        self.reason = reason
        super().__init__(f"Invalid listing {listing_id or '<unknown>'}: {reason}")


class ListingParser:
    """Converts camelCase listing records into Listing objects."""

    def parse_listing(self, record: Dict[str, Any]) -> Listing:
        """
        Parse a single listing record.

        Args:
            record: Listing record as returned by the listings API

        Returns:
            Validated Listing

        Raises:
            ListingParseError: If the record is missing required data or
                holds values of the wrong type
        """
        if not isinstance(record, dict):
            raise ListingParseError(None, f"expected an object, got {type(record).__name__}")

        listing_id = self._parse_id(record.get("id"))

        try:
            is_variable_comp = bool(record.get("isVariableComp", False))
            usd_range = self._parse_range(record.get("usdRange"))

            listing = Listing(
                id=listing_id,
                title=self._require_str(record, "title"),
                sponsor_name=self._require_str(record, "sponsorName"),
                listing_type=self._parse_type(
                    record.get("listingType", record.get("type"))
                ),
                reward_usd=self._parse_reward_usd(
                    record.get("rewardUSD"), usd_range, is_variable_comp
                ),
                skills=self._parse_skills(record.get("skills", [])),
                geographies=self._parse_geographies(record.get("geographies")),
                link=self._require_str(record, "link"),
                deadline=str(record.get("deadline") or "N/A"),
                published_at=self._parse_timestamp(record.get("publishedAt")),
                reward_token_name=record.get("rewardTokenName") or None,
                reward_value=self._parse_optional_number(
                    record.get("rewardValue"), "rewardValue"
                ),
                usd_range=usd_range,
                is_variable_comp=is_variable_comp,
                notified_at=(
                    self._parse_timestamp(record["notifiedAt"])
                    if record.get("notifiedAt")
                    else None
                ),
            )
            listing.validate()

        except ListingParseError:
            raise
        except (TypeError, ValueError) as e:
            raise ListingParseError(listing_id, str(e)) from e

        return listing

    def parse_listings(self, records: Iterable[Dict[str, Any]]) -> List[Listing]:
        """Parse many records, dropping and logging the invalid ones."""
        listings = []
        dropped = 0

        for record in records:
            try:
                listings.append(self.parse_listing(record))
            except ListingParseError as e:
                dropped += 1
                logger.warning(f"Dropping listing record: {e}")

        if dropped:
            logger.info(f"Parsed {len(listings)} listings, dropped {dropped} invalid records")

        return listings

    def _parse_id(self, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ListingParseError(None, "missing or invalid 'id'")

        listing_id = str(value).strip()
        if not listing_id:
            raise ListingParseError(None, "missing or invalid 'id'")
        return listing_id

    def _require_str(self, record: Dict[str, Any], key: str) -> str:
        value = record.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"missing or empty '{key}'")
        return value.strip()

    def _parse_type(self, value: Any) -> ListingType:
        if isinstance(value, str):
            for listing_type in ListingType:
                if value.strip().lower() == listing_type.value.lower():
                    return listing_type
        raise ValueError(f"unknown listing type: {value!r}")

    def _parse_optional_number(self, value: Any, key: str) -> Optional[float]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' must be a number")
        if value < 0:
            raise ValueError(f"'{key}' cannot be negative")
        return float(value)

    def _parse_range(self, value: Any) -> Optional[UsdRange]:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise ValueError("'usdRange' must be an object with min and max")

        usd_range = UsdRange(
            min=self._parse_optional_number(value.get("min"), "usdRange.min"),
            max=self._parse_optional_number(value.get("max"), "usdRange.max"),
        )
        if usd_range.min is None or usd_range.max is None:
            raise ValueError("'usdRange' requires both min and max")
        usd_range.validate()
        return usd_range

    def _parse_reward_usd(
        self, value: Any, usd_range: Optional[UsdRange], is_variable_comp: bool
    ) -> float:
        reward_usd = self._parse_optional_number(value, "rewardUSD")
        if reward_usd is not None:
            return reward_usd

        # The lower end of a range is the canonical comparison value
        if usd_range is not None:
            return usd_range.min

        if is_variable_comp:
            return 0.0

        raise ValueError("missing 'rewardUSD'")

    def _parse_skills(self, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("'skills' must be a list")

        skills: List[str] = []
        for skill in value:
            if not isinstance(skill, str):
                raise ValueError("all skills must be strings")
            tag = skill.strip().lower()
            if tag and tag not in skills:
                skills.append(tag)
        return skills

    def _parse_geographies(self, value: Any) -> List[str]:
        if not isinstance(value, list):
            raise ValueError("'geographies' must be a non-empty list")

        geographies = [g.strip() for g in value if isinstance(g, str) and g.strip()]
        if not geographies:
            raise ValueError("'geographies' must be a non-empty list")
        return geographies

    def _parse_timestamp(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            timestamp = value
        elif isinstance(value, str) and value.strip():
            try:
                timestamp = date_parser.parse(value)
            except (ValueError, OverflowError) as e:
                raise ValueError(f"unparseable timestamp {value!r}") from e
        else:
            raise ValueError("missing 'publishedAt'")

        # Naive timestamps from the API are UTC
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp
