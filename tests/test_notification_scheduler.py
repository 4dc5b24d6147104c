"""
Tests for the notification scheduler.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from earn_notifier.components.listing_source import InMemoryListingSource
from earn_notifier.components.notification_scheduler import NotificationScheduler
from earn_notifier.models.delivery import DeliveryResult
from earn_notifier.models.listing import ListingType
from earn_notifier.models.user import UserPreferences
from earn_notifier.services.preference_store import InMemoryPreferenceStore
from earn_notifier.utils.error_handling import ErrorCategory, ErrorTracker

from conftest import NOW, build_listing


def delivered(user_id):
    return DeliveryResult(
        success=True, delivery_time=NOW, error_message=None, recipient_id=user_id
    )


def failed(user_id, unreachable=False):
    return DeliveryResult(
        success=False,
        delivery_time=NOW,
        error_message="Recipient unreachable: Forbidden" if unreachable else "Bad request",
        recipient_id=user_id,
        recipient_unreachable=unreachable,
    )


@pytest.fixture
def store():
    return InMemoryPreferenceStore()


@pytest.fixture
def tracker():
    return ErrorTracker()


def make_scheduler(source, store, channel, tracker, **kwargs):
    return NotificationScheduler(
        listing_source=source,
        preference_store=store,
        message_channel=channel,
        error_tracker=tracker,
        **kwargs,
    )


class TestRunTick:
    """Test cases for a single scheduler tick."""

    @pytest.mark.asyncio
    async def test_vietnam_bounty_marked_even_if_send_raises(self, store, tracker, clock):
        """Test that a listing is committed after its dispatch raised."""
        store.apply_preferences(
            1,
            UserPreferences(
                geography="Vietnam",
                notify_for_bounties=True,
                notify_for_projects=False,
                min_usd_value=250,
            ),
        )
        listing = build_listing(
            "vn", listing_type=ListingType.BOUNTY, geographies=["Vietnam"], reward_usd=300
        )
        source = InMemoryListingSource([listing], clock=clock)
        channel = AsyncMock()
        channel.send_message.side_effect = RuntimeError("connection reset")

        scheduler = make_scheduler(source, store, channel, tracker)
        summary = await scheduler.run_tick()

        channel.send_message.assert_awaited_once()
        assert channel.send_message.await_args.args[0] == 1
        assert summary.outcomes[0].eligible_users == 1
        assert summary.outcomes[0].failed == 1
        assert summary.outcomes[0].committed is True
        assert source.get_listing("vn").notified_at is not None
        assert source.fetch_due_listings() == []

    @pytest.mark.asyncio
    async def test_failure_for_one_user_does_not_affect_another(self, store, tracker, clock):
        """Test that a failed send to A still lets B receive the listing."""
        store.apply_preferences(1, UserPreferences())
        store.apply_preferences(2, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        async def send(user_id, text):
            if user_id == 1:
                raise RuntimeError("user A failed")
            return delivered(user_id)

        channel = AsyncMock()
        channel.send_message.side_effect = send

        scheduler = make_scheduler(source, store, channel, tracker)
        summary = await scheduler.run_tick()

        recipients = sorted(call.args[0] for call in channel.send_message.await_args_list)
        assert recipients == [1, 2]
        assert summary.notifications_sent == 1
        assert summary.delivery_failures == 1
        assert source.get_listing("1").notified_at is not None
        assert tracker.get_error_stats()["category_breakdown"]["message_delivery"] == 1

    @pytest.mark.asyncio
    async def test_only_eligible_configured_users_notified(
        self, store, tracker, clock, mock_channel
    ):
        """Test that ineligible and unconfigured users receive nothing."""
        store.apply_preferences(1, UserPreferences(skills=["rust"]))
        store.apply_preferences(2, UserPreferences(skills=["python"]))
        store.get_or_create_user(3)
        source = InMemoryListingSource(
            [build_listing("1", skills=["rust", "solana"])], clock=clock
        )

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        summary = await scheduler.run_tick()

        mock_channel.send_message.assert_awaited_once()
        assert mock_channel.send_message.await_args.args[0] == 1
        assert summary.outcomes[0].eligible_users == 1

    @pytest.mark.asyncio
    async def test_listing_without_recipients_still_marked(
        self, store, tracker, clock, mock_channel
    ):
        """Test that a due listing nobody wants is committed anyway."""
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        summary = await scheduler.run_tick()

        mock_channel.send_message.assert_not_awaited()
        assert summary.outcomes[0].committed is True
        assert source.fetch_due_listings() == []

    @pytest.mark.asyncio
    async def test_young_listings_left_alone(self, store, tracker, clock, mock_channel):
        """Test that listings under twelve hours old are not processed."""
        store.apply_preferences(1, UserPreferences())
        source = InMemoryListingSource([build_listing("1", hours_old=11.9)], clock=clock)

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        summary = await scheduler.run_tick()

        assert summary.listings_processed == 0
        assert source.get_listing("1").notified_at is None

    @pytest.mark.asyncio
    async def test_each_listing_delivered_once_across_ticks(
        self, store, tracker, clock, mock_channel
    ):
        """Test that a second tick does not resend a committed listing."""
        store.apply_preferences(1, UserPreferences())
        source = InMemoryListingSource([build_listing("1"), build_listing("2")], clock=clock)

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        await scheduler.run_tick()
        second = await scheduler.run_tick()

        assert mock_channel.send_message.await_count == 2
        assert second.listings_processed == 0

    @pytest.mark.asyncio
    async def test_listings_processed_oldest_first(self, store, tracker, mock_channel):
        """Test that outcomes follow publication order."""
        source = Mock()
        source.fetch_due_listings.return_value = [
            build_listing("new", hours_old=13),
            build_listing("old", hours_old=40),
        ]
        source.mark_notified.return_value = True

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        summary = await scheduler.run_tick()

        assert [outcome.listing_id for outcome in summary.outcomes] == ["old", "new"]

    @pytest.mark.asyncio
    async def test_fetch_failure_marks_nothing(self, store, tracker, mock_channel):
        """Test that a failed fetch ends the tick without side effects."""
        store.apply_preferences(1, UserPreferences())
        source = Mock()
        source.fetch_due_listings.side_effect = ConnectionError("listings API down")

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        summary = await scheduler.run_tick()

        assert summary.fetch_failed is True
        assert "listings API down" in summary.error_message
        source.mark_notified.assert_not_called()
        mock_channel.send_message.assert_not_awaited()
        assert tracker.get_component_errors("scheduler")[0].category == ErrorCategory.LISTING_FETCH

    @pytest.mark.asyncio
    async def test_commit_failure_reported_and_not_redispatched(
        self, store, tracker, mock_channel
    ):
        """Test that an unmarked listing is not sent twice by the same process."""
        store.apply_preferences(1, UserPreferences())
        listing = build_listing("1")
        source = Mock()
        source.fetch_due_listings.return_value = [listing]
        source.mark_notified.side_effect = [False, True]

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        first = await scheduler.run_tick()

        assert first.commit_failures == ["1"]
        assert first.notifications_sent == 1
        errors = tracker.get_component_errors("scheduler")
        assert errors[-1].category == ErrorCategory.NOTIFICATION_COMMIT

        second = await scheduler.run_tick()

        assert mock_channel.send_message.await_count == 1
        assert second.outcomes[0].committed is True
        assert second.commit_failures == []
        assert source.mark_notified.call_count == 2

    @pytest.mark.asyncio
    async def test_pending_commit_dropped_when_listing_withdrawn(
        self, store, tracker, mock_channel
    ):
        """Test that a pending mark is forgotten once the source stops returning it."""
        store.apply_preferences(1, UserPreferences())
        source = Mock()
        source.fetch_due_listings.side_effect = [[build_listing("1")], []]
        source.mark_notified.return_value = False

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        await scheduler.run_tick()
        assert scheduler._pending_commits == {"1"}

        await scheduler.run_tick()

        assert scheduler._pending_commits == set()
        assert source.mark_notified.call_count == 1

    @pytest.mark.asyncio
    async def test_commit_exception_does_not_stop_tick(self, store, tracker, mock_channel):
        """Test that a raising commit is isolated to its listing."""
        source = Mock()
        source.fetch_due_listings.return_value = [
            build_listing("1", hours_old=20),
            build_listing("2", hours_old=15),
        ]
        source.mark_notified.side_effect = [OSError("disk full"), True]

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        summary = await scheduler.run_tick()

        assert [o.committed for o in summary.outcomes] == [False, True]
        assert summary.commit_failures == ["1"]

    @pytest.mark.asyncio
    async def test_preference_store_failure_skips_listing(self, tracker, mock_channel):
        """Test that a listing is left unmarked when users cannot be loaded."""
        store = Mock()
        store.get_configured_users.side_effect = RuntimeError("store unavailable")
        source = Mock()
        source.fetch_due_listings.return_value = [build_listing("1")]

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        summary = await scheduler.run_tick()

        assert summary.outcomes[0].skipped_reason.startswith("preference store unavailable")
        assert summary.commit_failures == []
        source.mark_notified.assert_not_called()

    @pytest.mark.asyncio
    async def test_formatter_failure_counts_as_failed_delivery(
        self, store, tracker, clock, mock_channel
    ):
        """Test that a listing that cannot be rendered is still committed."""
        store.apply_preferences(1, UserPreferences())
        store.apply_preferences(2, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        def broken_formatter(listing):
            raise KeyError("title")

        scheduler = make_scheduler(
            source, store, mock_channel, tracker, formatter=broken_formatter
        )
        summary = await scheduler.run_tick()

        mock_channel.send_message.assert_not_awaited()
        assert summary.outcomes[0].failed == 2
        assert summary.outcomes[0].committed is True

    @pytest.mark.asyncio
    async def test_custom_formatter_used(self, store, tracker, clock, mock_channel):
        """Test that the configured formatter renders the message."""
        store.apply_preferences(1, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        scheduler = make_scheduler(
            source, store, mock_channel, tracker, formatter=lambda listing: f"new: {listing.id}"
        )
        await scheduler.run_tick()

        mock_channel.send_message.assert_awaited_once_with(1, "new: 1")

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, store, tracker, clock):
        """Test that a tick requested while one is running does nothing."""
        store.apply_preferences(1, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(user_id, text):
            started.set()
            await release.wait()
            return delivered(user_id)

        channel = AsyncMock()
        channel.send_message.side_effect = slow_send

        scheduler = make_scheduler(source, store, channel, tracker)
        first = asyncio.create_task(scheduler.run_tick())
        await asyncio.wait_for(started.wait(), timeout=5)

        second = await scheduler.run_tick()
        assert second.skipped is True
        assert second.listings_processed == 0

        release.set()
        first_summary = await first

        assert first_summary.notifications_sent == 1
        assert channel.send_message.await_count == 1
        assert scheduler.last_tick is first_summary


class TestUnreachableRecipients:
    """Test cases for recipients that blocked the bot."""

    @pytest.mark.asyncio
    async def test_unreachable_user_deactivated(self, store, tracker, clock):
        """Test that a blocked recipient stops receiving notifications."""
        store.apply_preferences(1, UserPreferences())
        store.apply_preferences(2, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        async def send(user_id, text):
            return failed(user_id, unreachable=True) if user_id == 1 else delivered(user_id)

        channel = AsyncMock()
        channel.send_message.side_effect = send

        scheduler = make_scheduler(source, store, channel, tracker)
        await scheduler.run_tick()

        assert store.get_user(1).is_active is False
        assert [user.id for user in store.get_configured_users()] == [2]

    @pytest.mark.asyncio
    async def test_deactivation_can_be_disabled(self, store, tracker, clock):
        """Test that unreachable users stay active when deactivation is off."""
        store.apply_preferences(1, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)
        channel = AsyncMock()
        channel.send_message.return_value = failed(1, unreachable=True)

        scheduler = make_scheduler(
            source, store, channel, tracker, deactivate_unreachable_users=False
        )
        await scheduler.run_tick()

        assert store.get_user(1).is_active is True

    @pytest.mark.asyncio
    async def test_ordinary_failure_keeps_user_active(self, store, tracker, clock):
        """Test that other delivery failures do not deactivate the user."""
        store.apply_preferences(1, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)
        channel = AsyncMock()
        channel.send_message.return_value = failed(1)

        scheduler = make_scheduler(source, store, channel, tracker)
        await scheduler.run_tick()

        assert store.get_user(1).is_active is True


class TestPolling:
    """Test cases for the polling loop."""

    @pytest.mark.asyncio
    async def test_polling_loop_survives_fetch_failures(self, store, tracker, mock_channel):
        """Test that the loop keeps ticking after failed fetches."""
        source = Mock()
        source.fetch_due_listings.side_effect = ConnectionError("down")

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        scheduler.start_polling(interval_minutes=0.0005)

        for _ in range(200):
            if source.fetch_due_listings.call_count >= 3:
                break
            await asyncio.sleep(0.01)

        assert scheduler.is_polling is True
        await scheduler.stop_polling(timeout=5)

        assert source.fetch_due_listings.call_count >= 3
        assert scheduler.is_polling is False

    @pytest.mark.asyncio
    async def test_first_tick_runs_immediately(self, store, tracker, clock, mock_channel):
        """Test that starting the loop ticks without waiting an interval."""
        store.apply_preferences(1, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        scheduler.start_polling(interval_minutes=60)

        for _ in range(200):
            if scheduler.last_tick is not None:
                break
            await asyncio.sleep(0.01)

        await scheduler.stop_polling(timeout=5)
        assert scheduler.last_tick.notifications_sent == 1

    @pytest.mark.asyncio
    async def test_start_polling_twice_returns_same_task(self, store, tracker, mock_channel):
        """Test that a second start does not create a second loop."""
        source = Mock()
        source.fetch_due_listings.return_value = []

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        first = scheduler.start_polling(interval_minutes=60)
        second = scheduler.start_polling(interval_minutes=60)

        assert first is second
        await scheduler.stop_polling(timeout=5)

    @pytest.mark.asyncio
    async def test_invalid_interval_rejected(self, store, tracker, mock_channel):
        """Test that the polling interval must be positive."""
        scheduler = make_scheduler(Mock(), store, mock_channel, tracker)

        with pytest.raises(ValueError):
            scheduler.start_polling(interval_minutes=0)

    @pytest.mark.asyncio
    async def test_stop_without_start(self, store, tracker, mock_channel):
        """Test that stopping an idle scheduler is a no-op."""
        scheduler = make_scheduler(Mock(), store, mock_channel, tracker)
        await scheduler.stop_polling()
        assert scheduler.is_polling is False

    @pytest.mark.asyncio
    async def test_interval_change_does_not_interrupt_tick(self, store, tracker, clock):
        """Test that changing the interval mid-tick neither cancels nor repeats sends."""
        store.apply_preferences(1, UserPreferences())
        store.apply_preferences(2, UserPreferences())
        source = InMemoryListingSource([build_listing("1")], clock=clock)

        sent = []
        release = asyncio.Event()

        async def send_message(user_id, text):
            if user_id == 2:
                await release.wait()
            sent.append(user_id)
            return delivered(user_id)

        channel = AsyncMock()
        channel.send_message.side_effect = send_message

        scheduler = make_scheduler(source, store, channel, tracker)
        scheduler.start_polling(interval_minutes=60)

        for _ in range(200):
            if sent:
                break
            await asyncio.sleep(0.01)

        scheduler.set_polling_interval(30)
        release.set()

        for _ in range(200):
            if scheduler.last_tick is not None:
                break
            await asyncio.sleep(0.01)

        assert scheduler.is_polling is True
        assert sorted(sent) == [1, 2]
        assert scheduler.last_tick.commit_failures == []
        assert source.get_listing("1").notified_at is not None
        assert scheduler.interval_minutes == 30

        await scheduler.stop_polling(timeout=5)
        assert sorted(sent) == [1, 2]

    @pytest.mark.asyncio
    async def test_shorter_interval_wakes_waiting_loop(self, store, tracker, mock_channel):
        """Test that a shorter interval takes effect without waiting out the old one."""
        source = Mock()
        source.fetch_due_listings.return_value = []

        scheduler = make_scheduler(source, store, mock_channel, tracker)
        scheduler.start_polling(interval_minutes=60)

        for _ in range(200):
            if source.fetch_due_listings.call_count >= 1:
                break
            await asyncio.sleep(0.01)

        scheduler.set_polling_interval(0.0005)

        for _ in range(200):
            if source.fetch_due_listings.call_count >= 2:
                break
            await asyncio.sleep(0.01)

        await scheduler.stop_polling(timeout=5)
        assert source.fetch_due_listings.call_count >= 2

    def test_set_polling_interval_rejects_non_positive(self, store, tracker, mock_channel):
        """Test that an interval change must be positive."""
        scheduler = make_scheduler(Mock(), store, mock_channel, tracker)

        with pytest.raises(ValueError):
            scheduler.set_polling_interval(-1)
