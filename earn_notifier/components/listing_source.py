"""
Listing source adapters for the Earn Notifier system.

This module provides the sources the scheduler polls for due listings:
an in-memory source (seeded with sample data or a listings file) and an
HTTP source that reads a JSON listings endpoint and remembers which
listings were already announced in a state file.
"""

import json
import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
import yaml
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..models.config import ListingSourceConfig
from ..models.listing import DUE_AFTER, Listing
from .listing_parser import ListingParser

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Notified ids older than this are forgotten once the endpoint stops listing them
NOTIFIED_RETENTION = timedelta(days=90)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _oldest_first(listings: Iterable[Listing]) -> List[Listing]:
    return sorted(listings, key=lambda listing: listing.published_at)


def sample_listing_records(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Demo listings published relative to ``now``."""
    now = now or utcnow()

    def hours_ago(hours: float) -> str:
        return (now - timedelta(hours=hours)).isoformat()

    return [
        {
            "id": "1",
            "title": "Build a Telegram Bot",
            "sponsorName": "Solana Foundation",
            "rewardTokenName": "USDC",
            "rewardValue": 1000,
            "rewardUSD": 1000,
            "listingType": "Bounty",
            "skills": ["typescript", "telegram-api", "nodejs"],
            "geographies": ["Global"],
            "link": "https://earn.superteam.fun/listings/1",
            "deadline": "2024-08-01",
            "publishedAt": hours_ago(15),
        },
        {
            "id": "2",
            "title": "Develop a dApp",
            "sponsorName": "Superteam",
            "listingType": "Project",
            "usdRange": {"min": 2000, "max": 5000},
            "rewardUSD": 2000,
            "skills": ["rust", "solana", "react"],
            "geographies": ["Vietnam", "India"],
            "link": "https://earn.superteam.fun/listings/2",
            "deadline": "2024-09-15",
            "publishedAt": hours_ago(20),
        },
        {
            "id": "3",
            "title": "Marketing Campaign for NFT Project",
            "sponsorName": "NFT Innovators",
            "isVariableComp": True,
            "rewardUSD": 0,
            "listingType": "Project",
            "skills": ["marketing", "social-media", "nft"],
            "geographies": ["Global"],
            "link": "https://earn.superteam.fun/listings/3",
            "deadline": "2024-07-30",
            "publishedAt": hours_ago(0),
        },
        {
            "id": "4",
            "title": "Vietnamese Community Moderator",
            "sponsorName": "Solana VN",
            "rewardTokenName": "USDC",
            "rewardValue": 300,
            "rewardUSD": 300,
            "listingType": "Bounty",
            "skills": ["community-management", "vietnamese"],
            "geographies": ["Vietnam"],
            "link": "https://earn.superteam.fun/listings/4",
            "deadline": "2024-08-10",
            "publishedAt": hours_ago(5),
        },
    ]


class InMemoryListingSource:
    """Listing source backed by a dictionary held in process memory."""

    def __init__(
        self,
        listings: Optional[Iterable[Listing]] = None,
        due_after: timedelta = DUE_AFTER,
        clock: Clock = utcnow,
    ):
        self.due_after = due_after
        self.clock = clock
        self._listings: Dict[str, Listing] = {}
        self._lock = threading.Lock()

        for listing in listings or []:
            self.add_listing(listing)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Dict[str, Any]],
        parser: Optional[ListingParser] = None,
        **kwargs,
    ) -> "InMemoryListingSource":
        """Build a source from raw records; invalid records are dropped."""
        parser = parser or ListingParser()
        return cls(parser.parse_listings(records), **kwargs)

    @classmethod
    def from_file(cls, path: str, **kwargs) -> "InMemoryListingSource":
        """Build a source from a YAML or JSON list of listing records."""
        with open(path, "r", encoding="utf-8") as f:
            records = yaml.safe_load(f) or []

        if isinstance(records, dict):
            records = records.get("listings", [])

        if not isinstance(records, list):
            raise ValueError(f"Listings file must contain a list of records: {path}")

        return cls.from_records(records, **kwargs)

    def add_listing(self, listing: Listing) -> None:
        listing.validate()
        with self._lock:
            self._listings[listing.id] = listing

    def get_listing(self, listing_id: str) -> Optional[Listing]:
        with self._lock:
            return self._listings.get(listing_id)

    def fetch_due_listings(self) -> List[Listing]:
        """Return copies of due listings, oldest first."""
        now = self.clock()
        with self._lock:
            due = [
                replace(listing)
                for listing in self._listings.values()
                if listing.is_due(now, self.due_after)
            ]

        logger.debug(f"{len(due)} listings due for notification")
        return _oldest_first(due)

    def mark_notified(self, listing_id: str) -> bool:
        """Set ``notified_at`` once; repeated calls keep the first timestamp."""
        with self._lock:
            listing = self._listings.get(listing_id)
            if listing is None:
                logger.warning(f"Cannot mark unknown listing {listing_id} as notified")
                return False

            if listing.notified_at is None:
                listing.notified_at = self.clock()
                logger.info(f"Marked listing {listing_id} as notification sent")

        return True


class NotifiedListingTracker:
    """Persists the ids of listings whose notification pass completed."""

    def __init__(
        self,
        state_file: str = "data/notified_listings.json",
        clock: Clock = utcnow,
        retention: timedelta = NOTIFIED_RETENTION,
    ):
        """Initialize the tracker, loading any previous state.

        Args:
            state_file: Path to the JSON file holding notified listing ids
            clock: Source of the current time
            retention: How long an id is kept after the endpoint stops
                returning its listing
        """
        self.state_file = Path(state_file)
        self.clock = clock
        self.retention = retention
        self.notified: Dict[str, str] = {}
        self._lock = threading.Lock()

        self._load_state()

        logger.info(
            f"NotifiedListingTracker initialized with {len(self.notified)} notified listings"
        )

    def __contains__(self, listing_id: str) -> bool:
        return listing_id in self.notified

    def mark(self, listing_id: str) -> None:
        """Record a listing as notified and persist the state.

        Raises:
            OSError: If the state file cannot be written. The id stays
                recorded in memory for the lifetime of the process.
        """
        with self._lock:
            if listing_id in self.notified:
                return
            self.notified[listing_id] = self.clock().isoformat()
            self._save_state()

    def prune(self, listed_ids: Iterable[str] = ()) -> int:
        """Forget ids past the retention period whose listing is no longer listed.

        Ids in ``listed_ids`` are always kept, so a listing the endpoint still
        returns can never become due again.

        Returns:
            Number of ids removed
        """
        listed = set(listed_ids)
        cutoff = self.clock() - self.retention

        with self._lock:
            expired = [
                listing_id
                for listing_id, notified_at in self.notified.items()
                if listing_id not in listed and self._is_before(notified_at, cutoff)
            ]
            if not expired:
                return 0

            for listing_id in expired:
                del self.notified[listing_id]
            try:
                self._save_state()
            except OSError as e:
                logger.warning(f"Could not persist pruned state to {self.state_file}: {e}")

        logger.info(f"Pruned {len(expired)} expired notified listings")
        return len(expired)

    @staticmethod
    def _is_before(timestamp: str, cutoff: datetime) -> bool:
        try:
            notified_at = datetime.fromisoformat(timestamp)
        except (TypeError, ValueError):
            return False
        if notified_at.tzinfo is None:
            notified_at = notified_at.replace(tzinfo=timezone.utc)
        return notified_at < cutoff

    def _load_state(self) -> None:
        try:
            if self.state_file.exists():
                with open(self.state_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self.notified = dict(data.get("notified", {}))
                logger.debug(
                    f"Loaded {len(self.notified)} notified listings from {self.state_file}"
                )
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Could not load state from {self.state_file}: {e}")
            self.notified = {}

    def _save_state(self) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

        tmp_file = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(
                {"notified": self.notified, "last_updated": self.clock().isoformat()},
                f,
                indent=2,
            )
        tmp_file.replace(self.state_file)


class HttpListingSource:
    """Listing source reading a JSON listings endpoint."""

    def __init__(
        self,
        url: str,
        tracker: NotifiedListingTracker,
        parser: Optional[ListingParser] = None,
        due_after: timedelta = DUE_AFTER,
        timeout: int = 30,
        max_retries: int = 3,
        clock: Clock = utcnow,
    ):
        """
        Initialize the HTTP listing source.

        Args:
            url: Endpoint returning a JSON list of listings, or an object
                with a ``listings`` list
            tracker: Persisted record of notified listing ids
            parser: Listing parser
            due_after: Minimum listing age before notification
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for failed requests
            clock: Source of the current time
        """
        self.url = url
        self.tracker = tracker
        self.parser = parser or ListingParser()
        self.due_after = due_after
        self.timeout = timeout
        self.clock = clock

        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update(
            {"User-Agent": "Earn-Notifier/1.0", "Accept": "application/json"}
        )

    def fetch_due_listings(self) -> List[Listing]:
        """
        Fetch listings and return the due ones, oldest first.

        Raises:
            requests.RequestException: If the endpoint cannot be reached
            ValueError: If the response is not a listings document
        """
        logger.debug(f"Fetching listings from {self.url}")

        response = self.session.get(self.url, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()

        records = payload.get("listings") if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise ValueError(f"Unexpected listings payload from {self.url}")

        # Records that fail to parse still hold on to their notified ids
        self.tracker.prune(
            str(record["id"]).strip()
            for record in records
            if isinstance(record, dict) and record.get("id") is not None
        )
        listings = self.parser.parse_listings(records)

        now = self.clock()
        due = [
            listing
            for listing in listings
            if listing.id not in self.tracker and listing.is_due(now, self.due_after)
        ]

        logger.info(f"Fetched {len(records)} listings, {len(due)} due for notification")
        return _oldest_first(due)

    def mark_notified(self, listing_id: str) -> bool:
        try:
            self.tracker.mark(listing_id)
        except OSError as e:
            logger.error(
                f"Could not persist notified state for listing {listing_id}: {e}"
            )
            return False

        logger.info(f"Marked listing {listing_id} as notification sent")
        return True


def create_listing_source(
    config: ListingSourceConfig, due_after_hours: float = 12, clock: Clock = utcnow
):
    """
    Create the listing source described by the configuration.

    Raises:
        ValueError: If the source type is not supported
    """
    due_after = timedelta(hours=due_after_hours)

    if config.type == "mock":
        if config.listings_file:
            return InMemoryListingSource.from_file(
                config.listings_file, due_after=due_after, clock=clock
            )
        return InMemoryListingSource.from_records(
            sample_listing_records(clock()), due_after=due_after, clock=clock
        )

    if config.type == "http":
        return HttpListingSource(
            url=config.url,
            tracker=NotifiedListingTracker(config.state_file, clock=clock),
            due_after=due_after,
            timeout=config.timeout,
            clock=clock,
        )

    raise ValueError(f"Unsupported listing source type: {config.type}")
