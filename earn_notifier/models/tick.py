"""
Scheduler tick result models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class ListingOutcome:
    """What happened to one due listing during a tick."""

    listing_id: str
    eligible_users: int = 0
    delivered: int = 0
    failed: int = 0
    committed: bool = False
    skipped_reason: Optional[str] = None


@dataclass
class TickSummary:
    """Result of one fetch-evaluate-dispatch-commit cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    fetch_failed: bool = False
    error_message: Optional[str] = None
    outcomes: List[ListingOutcome] = field(default_factory=list)

    @property
    def listings_processed(self) -> int:
        return len(self.outcomes)

    @property
    def notifications_sent(self) -> int:
        return sum(outcome.delivered for outcome in self.outcomes)

    @property
    def delivery_failures(self) -> int:
        return sum(outcome.failed for outcome in self.outcomes)

    @property
    def commit_failures(self) -> List[str]:
        return [
            outcome.listing_id
            for outcome in self.outcomes
            if not outcome.committed and outcome.skipped_reason is None
        ]

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
