"""
Message channel components for the Earn Notifier system.

This module delivers notification text to individual users over the
Telegram Bot API, retrying failed connections and flood-control waits a
bounded number of times and reporting everything else as a failed DeliveryResult.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from telegram import Bot
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TimedOut

from ..models.delivery import DeliveryResult

logger = logging.getLogger(__name__)


def _retry_after_seconds(error: RetryAfter) -> float:
    retry_after = error.retry_after
    if isinstance(retry_after, timedelta):
        return retry_after.total_seconds()
    return float(retry_after)


class TelegramMessageChannel:
    """Sends messages to Telegram chats through a python-telegram-bot Bot."""

    def __init__(
        self,
        bot: Bot,
        parse_mode: Optional[str] = "Markdown",
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the Telegram channel.

        Args:
            bot: Telegram bot used for delivery
            parse_mode: Telegram parse mode for notification text
            max_retries: Maximum number of retries for transient errors
            retry_delay: Initial delay between retries in seconds
        """
        self.bot = bot
        self.parse_mode = parse_mode
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def send_message(self, user_id: int, text: str) -> DeliveryResult:
        """
        Send a message to a user.

        Args:
            user_id: Telegram chat id of the recipient
            text: Message text

        Returns:
            DeliveryResult: Result of the delivery attempt
        """
        start_time = datetime.now()
        parse_mode = self.parse_mode
        last_error = None
        attempt = 0

        while True:
            try:
                await self.bot.send_message(
                    chat_id=user_id,
                    text=text,
                    parse_mode=parse_mode,
                )
                delivery_time = datetime.now()
                logger.info(
                    f"Message sent to {user_id} in "
                    f"{(delivery_time - start_time).total_seconds():.2f}s"
                )
                return DeliveryResult(
                    success=True,
                    delivery_time=delivery_time,
                    error_message=None,
                    recipient_id=user_id,
                )

            except Forbidden as e:
                # Blocked the bot or deleted the chat; retrying will not help
                logger.warning(f"Recipient {user_id} is unreachable: {e}")
                return self._failure(user_id, f"Recipient unreachable: {e}", unreachable=True)

            except RetryAfter as e:
                last_error = str(e)
                sleep_time = _retry_after_seconds(e)

            except BadRequest as e:
                if parse_mode is not None and "parse" in str(e).lower():
                    # Listing text broke the markup; the plain text resend is not a retry
                    logger.warning(f"Markup rejected for {user_id}, resending as plain text")
                    parse_mode = None
                    last_error = str(e)
                    continue
                logger.error(f"Telegram rejected message to {user_id}: {e}")
                return self._failure(user_id, f"Bad request: {e}")

            except TimedOut as e:
                # The message may have been delivered; resending could duplicate it
                logger.warning(f"Send to {user_id} timed out, not resending: {e}")
                return self._failure(user_id, f"Timed out, delivery unknown: {e}")

            except NetworkError as e:
                last_error = str(e)
                sleep_time = self.retry_delay * (2**attempt)  # Exponential backoff

            if attempt >= self.max_retries:
                break

            logger.warning(
                f"Send attempt {attempt + 1} to {user_id} failed: {last_error}. "
                f"Retrying in {sleep_time:.1f} seconds..."
            )
            await asyncio.sleep(sleep_time)
            attempt += 1

        error_msg = f"Failed after {attempt + 1} attempts. Last error: {last_error}"
        logger.error(f"Delivery to {user_id} failed: {error_msg}")
        return self._failure(user_id, error_msg)

    def _failure(
        self, user_id: int, error_message: str, unreachable: bool = False
    ) -> DeliveryResult:
        result = DeliveryResult(
            success=False,
            delivery_time=datetime.now(),
            error_message=error_message[:500],
            recipient_id=user_id,
            recipient_unreachable=unreachable,
        )
        result.validate()
        return result

    async def test_connection(self) -> bool:
        """Test connection to the Telegram Bot API."""
        try:
            bot_info = await self.bot.get_me()
            logger.info(f"Connected to Telegram bot: @{bot_info.username}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Telegram: {e}")
            return False
