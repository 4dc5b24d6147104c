"""
Telegram bot handler for the Earn Notifier bot.

This module wires python-telegram-bot handlers for commands, free-text
wizard answers and inline keyboard presses to the command processor, and
sends the processor's replies back to the chat.
"""

from typing import List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..interfaces import ICommandProcessor
from ..models.telegram import BotCommand, CommandResult, InlineButton
from ..utils.logging import get_logger

logger = get_logger("telegram.bot")

COMMANDS = ["start", "help", "configure", "myconfig", "cancel"]

IDLE_TEXT = "Use /configure to set your notification preferences or /help to see all commands."


def build_keyboard(buttons: List[List[InlineButton]]) -> Optional[InlineKeyboardMarkup]:
    """Convert (label, callback_data) rows into an inline keyboard."""
    if not buttons:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(label, callback_data=data) for label, data in row]
            for row in buttons
        ]
    )


class TelegramBotHandler:
    """Handles Telegram updates and routes them to the command processor."""

    def __init__(
        self,
        bot_token: str,
        command_processor: Optional[ICommandProcessor] = None,
        application: Optional[Application] = None,
    ):
        """
        Initialize Telegram bot handler.

        Args:
            bot_token: Telegram bot token
            command_processor: Processor for commands and wizard input
            application: Prebuilt application, built from the token if omitted
        """
        self.bot_token = bot_token
        self.command_processor = command_processor

        self.application = application or Application.builder().token(bot_token).build()
        self.bot = self.application.bot

        self.is_polling = False

        self._setup_handlers()

        logger.info("Telegram bot handler initialized")

    def _setup_handlers(self) -> None:
        """Setup message and command handlers."""
        for command in COMMANDS:
            self.application.add_handler(CommandHandler(command, self._handle_command))

        self.application.add_handler(CallbackQueryHandler(self._handle_callback))
        self.application.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message)
        )

        logger.info("Telegram bot handlers configured")

    async def start_polling(self) -> None:
        """Start polling for updates from Telegram."""
        if self.is_polling:
            logger.warning("Bot is already polling")
            return

        try:
            self.is_polling = True
            logger.info("Starting Telegram bot polling...")

            await self.application.initialize()
            await self.application.start()
            await self.application.updater.start_polling()

            logger.info("Telegram bot polling started successfully")

        except Exception as e:
            logger.error(f"Error starting bot polling: {e}")
            self.is_polling = False
            raise

    async def stop_polling(self) -> None:
        """Stop polling for updates."""
        if not self.is_polling:
            return

        try:
            self.is_polling = False
            logger.info("Stopping Telegram bot polling...")

            if self.application.updater:
                await self.application.updater.stop()

            await self.application.stop()
            await self.application.shutdown()

            logger.info("Telegram bot polling stopped")

        except Exception as e:
            logger.error(f"Error stopping bot polling: {e}")

    async def _handle_command(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle any registered /command."""
        if not update.message or not update.message.text:
            return

        command = parse_command_name(update.message.text)
        await self._process_command(update, command, context.args or [])

    async def _process_command(
        self, update: Update, command: str, args: List[str]
    ) -> None:
        """Process a command through the command processor."""
        if not update.effective_user or not update.effective_chat:
            logger.warning("Received update without user or chat information")
            return

        chat_id = update.effective_chat.id
        try:
            bot_command = BotCommand(
                command=command,
                args=args,
                user_id=update.effective_user.id,
                chat_id=chat_id,
                raw_text=update.message.text if update.message else "",
            )

            if self.command_processor is None:
                await self.send_response(chat_id, "❌ Command processor not available")
                return

            result = await self.command_processor.process_command(bot_command)
            await self.send_result(chat_id, result)

        except Exception as e:
            logger.error(f"Error processing command {command}: {e}", exc_info=True)
            await self.send_response(chat_id, "❌ An error occurred processing your command")

    async def _handle_message(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle non-command text, normally an answer to a wizard question."""
        if not update.message or not update.message.text or not update.effective_chat:
            return

        chat_id = update.effective_chat.id
        try:
            result = None
            if self.command_processor is not None:
                result = await self.command_processor.handle_text(
                    chat_id, update.message.text
                )

            if result is None:
                await self.send_response(chat_id, IDLE_TEXT)
            else:
                await self.send_result(chat_id, result)

        except Exception as e:
            logger.error(f"Error handling message from {chat_id}: {e}", exc_info=True)
            await self.send_response(chat_id, "❌ An error occurred processing your answer")

    async def _handle_callback(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle an inline keyboard press."""
        query = update.callback_query
        if query is None or not update.effective_chat:
            return

        chat_id = update.effective_chat.id
        await query.answer()

        try:
            if self.command_processor is None:
                return

            result = await self.command_processor.handle_callback(chat_id, query.data or "")

            if result.edit_text:
                try:
                    await query.edit_message_text(result.edit_text)
                except Exception as e:
                    logger.warning(f"Could not edit message in chat {chat_id}: {e}")

            await self.send_result(chat_id, result)

        except Exception as e:
            logger.error(f"Error handling button press from {chat_id}: {e}", exc_info=True)
            await self.send_response(chat_id, "❌ An error occurred processing your choice")

    async def send_result(self, chat_id: int, result: CommandResult) -> bool:
        """Send a CommandResult, with its inline keyboard if any."""
        return await self.send_response(
            chat_id, result.message, reply_markup=build_keyboard(result.buttons)
        )

    async def send_response(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        """
        Send response message to chat.

        Args:
            chat_id: Chat ID to send message to
            text: Message text
            reply_markup: Optional inline keyboard

        Returns:
            True if message was sent successfully
        """
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode="Markdown",
                reply_markup=reply_markup,
            )
            logger.debug(f"Sent response to chat {chat_id}")
            return True

        except Exception as e:
            logger.error(f"Error sending response to chat {chat_id}: {e}")

            # Try sending without markdown if formatting fails
            try:
                await self.bot.send_message(
                    chat_id=chat_id, text=text, reply_markup=reply_markup
                )
                return True
            except Exception as e2:
                logger.error(f"Error sending fallback response: {e2}")
                return False


def parse_command_name(text: str) -> str:
    """
    Extract the command name from message text.

    ``/configure@EarnBot extra`` becomes ``configure``.
    """
    first = text.strip().split()[0] if text.strip() else ""
    return first.lstrip("/").split("@", 1)[0].lower()
