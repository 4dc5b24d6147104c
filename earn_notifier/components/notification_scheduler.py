"""
Notification scheduler for the Earn Notifier system.

Each tick fetches the listings that are due, evaluates every configured
user against each of them, dispatches the matching notifications and then
marks the listing as notified. A listing is marked once all of its
dispatches have been attempted, whether or not they succeeded; failed
deliveries are logged and never retried.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from ..interfaces import IListingSource, IMessageChannel, IPreferenceStore
from ..models.delivery import DeliveryResult
from ..models.listing import Listing
from ..models.tick import ListingOutcome, TickSummary
from ..models.user import User
from ..utils.error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorTracker,
    get_error_tracker,
)
from ..utils.logging import get_logger
from .eligibility import EligibilityEvaluator
from .message_formatter import format_listing_message

logger = get_logger("scheduler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationScheduler:
    """Runs the fetch-evaluate-dispatch-commit cycle on a timer."""

    def __init__(
        self,
        listing_source: IListingSource,
        preference_store: IPreferenceStore,
        message_channel: IMessageChannel,
        formatter: Callable[[Listing], str] = format_listing_message,
        evaluator: Optional[EligibilityEvaluator] = None,
        deactivate_unreachable_users: bool = True,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            listing_source: Source of due listings and the notified mark
            preference_store: Store holding user preferences
            message_channel: Channel used to deliver notifications
            formatter: Renders a listing into message text
            evaluator: Eligibility rules applied per (user, listing)
            deactivate_unreachable_users: Stop notifying users whose chat
                can no longer be reached
            error_tracker: Error tracker, defaults to the global one
        """
        self.listing_source = listing_source
        self.preference_store = preference_store
        self.message_channel = message_channel
        self.formatter = formatter
        self.evaluator = evaluator or EligibilityEvaluator()
        self.deactivate_unreachable_users = deactivate_unreachable_users
        self.error_tracker = error_tracker or get_error_tracker()

        self.interval_minutes: float = 60
        self.last_tick: Optional[TickSummary] = None
        self._tick_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        # Set to cut the wait between ticks short
        self._wakeup = asyncio.Event()
        self._polling_task: Optional[asyncio.Task] = None
        # Dispatched listings whose notified mark could not be written yet
        self._pending_commits: Set[str] = set()

    @property
    def is_polling(self) -> bool:
        return self._polling_task is not None and not self._polling_task.done()

    def start_polling(self, interval_minutes: float = 60) -> asyncio.Task:
        """
        Start the polling loop: one tick now, then one per interval.

        Args:
            interval_minutes: Minutes between the start of consecutive ticks

        Returns:
            The task running the loop
        """
        self.set_polling_interval(interval_minutes)

        if self.is_polling:
            logger.warning("Notification polling is already running")
            return self._polling_task

        self._stop_event.clear()
        self._polling_task = asyncio.create_task(self._polling_loop())
        logger.info(
            f"Notification polling started. Checking every {interval_minutes} minutes.",
            extra={"interval_minutes": interval_minutes},
        )
        return self._polling_task

    def set_polling_interval(self, interval_minutes: float) -> None:
        """
        Change the polling interval without interrupting a running tick.

        The next tick is due ``interval_minutes`` after the start of the
        previous one.
        """
        if interval_minutes <= 0:
            raise ValueError("Polling interval must be positive")

        self.interval_minutes = interval_minutes
        self._wakeup.set()

    async def stop_polling(self, timeout: Optional[float] = None) -> None:
        """Stop the loop, letting an in-flight tick finish within ``timeout``."""
        if self._polling_task is None:
            return

        self._stop_event.set()
        self._wakeup.set()
        task = self._polling_task
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Tick still running at shutdown, abandoning it")
        finally:
            self._polling_task = None

        logger.info("Notification polling stopped")

    async def _polling_loop(self) -> None:
        loop = asyncio.get_running_loop()

        while not self._stop_event.is_set():
            tick_started = loop.time()
            try:
                await self.run_tick()
            except Exception as e:
                # run_tick handles its own failures; this keeps the loop alive regardless
                logger.error(
                    f"Unexpected error in notification tick: {e}", exc_info=True
                )

            # Sleep until the next tick is due; an interval change re-computes the wait
            while not self._stop_event.is_set():
                remaining = tick_started + self.interval_minutes * 60 - loop.time()
                if remaining <= 0:
                    break
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    break

    async def run_tick(self) -> TickSummary:
        """
        Run one complete tick.

        A tick requested while another one is still running is skipped.

        Returns:
            TickSummary describing what happened
        """
        summary = TickSummary(started_at=_utcnow())

        if self._tick_lock.locked():
            logger.warning("Previous tick still running, skipping this one")
            summary.skipped = True
            summary.finished_at = _utcnow()
            return summary

        async with self._tick_lock:
            await self._run_tick(summary)

        summary.finished_at = _utcnow()
        self.last_tick = summary

        if summary.listings_processed:
            logger.info(
                "Notification tick completed",
                extra={
                    "listings": summary.listings_processed,
                    "sent": summary.notifications_sent,
                    "failed": summary.delivery_failures,
                    "commit_failures": summary.commit_failures,
                    "duration_seconds": summary.duration_seconds,
                },
            )
        return summary

    async def _run_tick(self, summary: TickSummary) -> None:
        logger.info("Checking for listings due for notification")

        try:
            listings = await asyncio.to_thread(self.listing_source.fetch_due_listings)
        except Exception as e:
            summary.fetch_failed = True
            summary.error_message = str(e)
            logger.error(
                f"Failed to fetch due listings: {e}",
                extra={"error_type": type(e).__name__},
            )
            self.error_tracker.record_error(
                component="scheduler",
                category=ErrorCategory.LISTING_FETCH,
                severity=ErrorSeverity.MEDIUM,
                message=f"Failed to fetch due listings: {e}",
                exception=e,
            )
            return

        # A pending id the source no longer returns was marked elsewhere or withdrawn
        self._pending_commits.intersection_update(listing.id for listing in listings)

        if not listings:
            logger.info("No listings due for notification")
            return

        for listing in sorted(listings, key=lambda item: item.published_at):
            if listing.id in self._pending_commits:
                summary.outcomes.append(await self._retry_commit(listing))
            else:
                summary.outcomes.append(await self._process_listing(listing))

    async def _process_listing(self, listing: Listing) -> ListingOutcome:
        outcome = ListingOutcome(listing_id=listing.id)
        logger.info(
            f"Processing listing: {listing.title}", extra={"listing_id": listing.id}
        )

        try:
            users = self.preference_store.get_configured_users()
        except Exception as e:
            # Nothing was dispatched, so the listing is left for the next tick
            outcome.skipped_reason = f"preference store unavailable: {e}"
            logger.error(
                f"Could not load configured users for listing {listing.id}: {e}",
                exc_info=True,
            )
            self.error_tracker.record_error(
                component="scheduler",
                category=ErrorCategory.SYSTEM,
                severity=ErrorSeverity.HIGH,
                message=f"Could not load configured users: {e}",
                exception=e,
                context={"listing_id": listing.id},
            )
            return outcome

        eligible = [user for user in users if self._is_eligible(user, listing)]
        outcome.eligible_users = len(eligible)

        if eligible:
            results = await self._dispatch_all(eligible, listing)
            outcome.delivered = sum(1 for result in results if result.success)
            outcome.failed = len(results) - outcome.delivered

        outcome.committed = await self._commit(listing)
        return outcome

    async def _retry_commit(self, listing: Listing) -> ListingOutcome:
        logger.info(
            f"Listing {listing.id} was already dispatched, retrying notified mark only",
            extra={"listing_id": listing.id},
        )
        outcome = ListingOutcome(listing_id=listing.id)
        outcome.committed = await self._commit(listing)
        return outcome

    def _is_eligible(self, user: User, listing: Listing) -> bool:
        try:
            result = self.evaluator.evaluate(user, listing)
        except Exception as e:
            logger.error(
                f"Eligibility check failed for user {user.id} and listing {listing.id}: {e}",
                exc_info=True,
            )
            return False

        if not result.eligible:
            logger.debug(
                f"User {user.id} not eligible for listing {listing.id}",
                extra={"failed_rules": result.failed_rules},
            )
        return result.eligible

    async def _dispatch_all(
        self, users: List[User], listing: Listing
    ) -> List[DeliveryResult]:
        try:
            message = self.formatter(listing)
        except Exception as e:
            logger.error(f"Could not format listing {listing.id}: {e}", exc_info=True)
            return [self._failed_delivery(user.id, f"Formatting failed: {e}") for user in users]

        # Siblings run to completion independently; _dispatch never raises
        return await asyncio.gather(
            *(self._dispatch(user, listing, message) for user in users)
        )

    async def _dispatch(self, user: User, listing: Listing, message: str) -> DeliveryResult:
        try:
            result = await self.message_channel.send_message(user.id, message)
        except Exception as e:
            result = self._failed_delivery(user.id, str(e) or type(e).__name__)

        if result.success:
            logger.info(
                f"Notified user {user.id} about listing {listing.id}",
                extra={"user_id": user.id, "listing_id": listing.id},
            )
            return result

        logger.error(
            f"Failed to send notification to user {user.id} for listing {listing.id}: "
            f"{result.error_message}",
            extra={"user_id": user.id, "listing_id": listing.id},
        )
        self.error_tracker.record_error(
            component="scheduler",
            category=ErrorCategory.MESSAGE_DELIVERY,
            severity=ErrorSeverity.LOW,
            message=result.error_message or "Delivery failed",
            context={"user_id": user.id, "listing_id": listing.id},
        )

        if result.recipient_unreachable and self.deactivate_unreachable_users:
            self._deactivate(user.id)

        return result

    def _deactivate(self, user_id: int) -> None:
        try:
            self.preference_store.deactivate_user(user_id)
            logger.warning(
                f"User {user_id} blocked the bot, notifications paused until they reconfigure",
                extra={"user_id": user_id},
            )
        except Exception as e:
            logger.error(f"Could not deactivate user {user_id}: {e}")

    def _failed_delivery(self, user_id: int, error_message: str) -> DeliveryResult:
        return DeliveryResult(
            success=False,
            delivery_time=datetime.now(),
            error_message=error_message[:500],
            recipient_id=user_id,
        )

    async def _commit(self, listing: Listing) -> bool:
        try:
            committed = bool(
                await asyncio.to_thread(self.listing_source.mark_notified, listing.id)
            )
            error = None
        except Exception as e:
            committed = False
            error = e

        if committed:
            self._pending_commits.discard(listing.id)
            return True

        self._pending_commits.add(listing.id)
        logger.error(
            f"Failed to mark listing {listing.id} as notified; "
            f"it may be announced again after a restart",
            extra={"listing_id": listing.id, "error": str(error) if error else None},
        )
        self.error_tracker.record_error(
            component="scheduler",
            category=ErrorCategory.NOTIFICATION_COMMIT,
            severity=ErrorSeverity.HIGH,
            message=f"Failed to mark listing {listing.id} as notified",
            exception=error,
            context={"listing_id": listing.id},
        )
        return False
