"""
Main application orchestrator for the Earn Notifier bot.

This module wires the preference store, listing source, Telegram bot and
notification scheduler together, owns their lifecycle and shuts them down
gracefully on SIGINT/SIGTERM.
"""

import asyncio
import signal
from datetime import datetime
from typing import Any, Dict, Optional

from .components.configuration_wizard import ConfigurationWizard
from .components.listing_source import create_listing_source
from .components.message_channel import TelegramMessageChannel
from .components.message_formatter import ListingMessageFormatter
from .components.notification_scheduler import NotificationScheduler
from .components.telegram_bot_handler import TelegramBotHandler
from .interfaces import IConfigurationManager, IListingSource
from .models.config import Configuration
from .services.config_manager import ConfigurationManager
from .services.preference_store import InMemoryPreferenceStore
from .utils.error_handling import (
    ErrorCategory,
    ErrorSeverity,
    RetryConfig,
    get_error_tracker,
    with_error_handling,
)
from .utils.logging import LoggingManager, get_logger, setup_logging

# Seconds between config reload and health checks
MAINTENANCE_INTERVAL = 30

# Seconds an in-flight tick may take to finish during shutdown
SHUTDOWN_TIMEOUT = 30


class ApplicationOrchestrator:
    """
    Main application orchestrator that coordinates all system components.

    This class manages the lifecycle of all components, handles system startup
    and shutdown, and applies configuration changes while running.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the application orchestrator.

        Args:
            config_path: Path to configuration file. If None, uses default paths.
        """
        self.logger = get_logger("orchestrator")

        self.config_path = config_path
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.error_tracker = get_error_tracker()
        self._logging_manager: Optional[LoggingManager] = None

        # Component instances
        self._config_manager: Optional[IConfigurationManager] = None
        self._preference_store: Optional[InMemoryPreferenceStore] = None
        self._listing_source: Optional[IListingSource] = None
        self._bot_handler: Optional[TelegramBotHandler] = None
        self._message_channel: Optional[TelegramMessageChannel] = None
        self._scheduler: Optional[NotificationScheduler] = None

        # System state
        self._config: Optional[Configuration] = None
        self._startup_time: Optional[datetime] = None
        self._component_health: Dict[str, bool] = {}

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler
                signal.signal(
                    signum,
                    lambda received, frame: loop.call_soon_threadsafe(
                        self._signal_handler, received
                    ),
                )

    def _signal_handler(self, signum: int) -> None:
        """Handle shutdown signals."""
        self.logger.info(
            "Received shutdown signal, initiating graceful shutdown",
            extra={"signal": signum},
        )
        self._shutdown_event.set()

    @with_error_handling(
        component="orchestrator",
        category=ErrorCategory.SYSTEM,
        severity=ErrorSeverity.CRITICAL,
        fallback_value=False,
        suppress_exceptions=True,
    )
    async def initialize(self) -> bool:
        """
        Initialize all system components.

        Returns:
            True if initialization successful, False otherwise.
        """
        self.logger.info("Initializing Earn Notifier system...")

        if not await self._initialize_config_manager():
            return False

        if not await self._load_configuration():
            return False

        if not await self._initialize_components():
            return False

        if not await self._validate_components():
            return False

        self._startup_time = datetime.now()
        self.logger.info("System initialization completed successfully")
        return True

    @with_error_handling(
        component="orchestrator",
        category=ErrorCategory.CONFIGURATION,
        severity=ErrorSeverity.CRITICAL,
        fallback_value=False,
        suppress_exceptions=True,
    )
    async def _initialize_config_manager(self) -> bool:
        """Initialize the configuration manager."""
        self._config_manager = ConfigurationManager(self.config_path)
        self._component_health["config_manager"] = True
        self.logger.info("Configuration manager initialized")
        return True

    @with_error_handling(
        component="orchestrator",
        category=ErrorCategory.CONFIGURATION,
        severity=ErrorSeverity.CRITICAL,
        fallback_value=False,
        suppress_exceptions=True,
    )
    async def _load_configuration(self) -> bool:
        """Load and validate system configuration, then apply its logging settings."""
        self._config = self._config_manager.load_config()
        self._logging_manager = setup_logging(
            log_dir=self._config.logging.log_dir,
            log_level=self._config.logging.level,
        )
        self.logger.info("Configuration loaded and validated successfully")
        return True

    async def _initialize_components(self) -> bool:
        """Initialize all system components."""
        try:
            config = self._config

            self._preference_store = InMemoryPreferenceStore()
            self._component_health["preference_store"] = True
            self.logger.info("Preference store initialized")

            self._listing_source = create_listing_source(
                config.listing_source,
                due_after_hours=config.notifications.due_after_hours,
            )
            self._component_health["listing_source"] = True
            self.logger.info(
                "Listing source initialized",
                extra={"type": config.listing_source.type},
            )

            self._bot_handler = TelegramBotHandler(
                bot_token=config.telegram.bot_token,
                command_processor=ConfigurationWizard(self._preference_store),
            )
            self._component_health["telegram_bot"] = True
            self.logger.info("Telegram bot handler initialized")

            self._message_channel = TelegramMessageChannel(
                self._bot_handler.bot,
                parse_mode=config.telegram.parse_mode,
                max_retries=config.notifications.max_send_retries,
            )
            self._component_health["message_channel"] = True

            formatter = ListingMessageFormatter(utm_source=config.notifications.utm_source)
            self._scheduler = NotificationScheduler(
                listing_source=self._listing_source,
                preference_store=self._preference_store,
                message_channel=self._message_channel,
                formatter=formatter.format,
                deactivate_unreachable_users=config.notifications.deactivate_unreachable_users,
                error_tracker=self.error_tracker,
            )
            self._component_health["scheduler"] = True
            self.logger.info("Notification scheduler initialized")

            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize components: {e}", exc_info=True)
            self.error_tracker.record_error(
                component="orchestrator",
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.CRITICAL,
                message=f"Failed to initialize components: {e}",
                exception=e,
            )
            return False

    @with_error_handling(
        component="orchestrator",
        category=ErrorCategory.EXTERNAL_SERVICE,
        severity=ErrorSeverity.HIGH,
        retry_config=RetryConfig(max_attempts=3, base_delay=2.0),
    )
    async def _connect_telegram(self) -> None:
        if not await self._message_channel.test_connection():
            raise ConnectionError("Telegram Bot API connection test failed")

    async def _validate_components(self) -> bool:
        """Validate that the Telegram bot can reach the API."""
        try:
            await self._connect_telegram()
        except ConnectionError as e:
            self.logger.error(f"Critical component 'telegram_bot' is not healthy: {e}")
            self._component_health["telegram_bot"] = False
            return False

        healthy_components = sum(1 for health in self._component_health.values() if health)
        self.logger.info(
            f"Component health check: {healthy_components}/{len(self._component_health)} "
            f"components healthy"
        )
        return True

    async def start(self) -> None:
        """Start the bot, the notification loop and the maintenance loop."""
        if self._running:
            self.logger.warning("System is already running")
            return

        try:
            self._running = True
            self.logger.info("Starting main application loop...")

            await self._bot_handler.start_polling()
            self._scheduler.start_polling(self._config.notifications.polling_interval_minutes)

            while self._running and not self._shutdown_event.is_set():
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=MAINTENANCE_INTERVAL
                    )
                except asyncio.TimeoutError:
                    await self._check_config_reload()
                    await self._health_check()

        except Exception as e:
            self.logger.error(f"Fatal error in main loop: {e}", exc_info=True)

    async def _check_config_reload(self) -> None:
        """Check if configuration needs to be reloaded."""
        try:
            if self._config_manager.reload_if_changed():
                self.logger.info("Configuration reloaded")
                await self._update_components_config()
        except Exception as e:
            self.logger.error(f"Error checking config reload: {e}")

    async def _update_components_config(self) -> None:
        """Apply the settings that can change without a restart."""
        new_config = self._config_manager.get_config()
        old_config = self._config

        if new_config.logging.level != old_config.logging.level and self._logging_manager:
            self._logging_manager.set_log_level(new_config.logging.level)
            self.logger.info(f"Log level changed to {new_config.logging.level}")

        old_notifications = old_config.notifications
        new_notifications = new_config.notifications

        self._scheduler.deactivate_unreachable_users = (
            new_notifications.deactivate_unreachable_users
        )

        if new_notifications.polling_interval_minutes != old_notifications.polling_interval_minutes:
            self._scheduler.set_polling_interval(new_notifications.polling_interval_minutes)
            self.logger.info("Notification polling interval updated")

        if (
            new_config.telegram != old_config.telegram
            or new_config.listing_source != old_config.listing_source
            or new_notifications.due_after_hours != old_notifications.due_after_hours
            or new_notifications.utm_source != old_notifications.utm_source
            or new_notifications.max_send_retries != old_notifications.max_send_retries
        ):
            self.logger.warning(
                "Telegram, listing source and message settings take effect after a restart"
            )

        self._config = new_config

    async def _health_check(self) -> None:
        """Perform periodic health checks on components."""
        try:
            self._component_health["scheduler"] = self._scheduler.is_polling
            self._component_health["telegram_bot"] = self._bot_handler.is_polling

            last_tick = self._scheduler.last_tick
            if last_tick is not None:
                self._component_health["listing_source"] = not last_tick.fetch_failed

            unhealthy_components = [
                name for name, health in self._component_health.items() if not health
            ]
            if unhealthy_components:
                self.logger.warning(f"Unhealthy components: {unhealthy_components}")

        except Exception as e:
            self.logger.error(f"Error in health check: {e}")

    async def shutdown(self) -> None:
        """Gracefully shutdown the system."""
        if not self._running:
            return

        self.logger.info("Initiating graceful shutdown...")
        self._running = False
        self._shutdown_event.set()

        try:
            if self._scheduler:
                await self._scheduler.stop_polling(timeout=SHUTDOWN_TIMEOUT)

            if self._bot_handler:
                await self._bot_handler.stop_polling()

            uptime = datetime.now() - self._startup_time if self._startup_time else None
            self.logger.info(f"System shutdown complete. Uptime: {uptime}")

        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}", exc_info=True)

    def get_system_status(self) -> Dict[str, Any]:
        """Get current system status information."""
        last_tick = self._scheduler.last_tick if self._scheduler else None
        users = self._preference_store.get_all_users() if self._preference_store else []

        return {
            "running": self._running,
            "startup_time": self._startup_time.isoformat() if self._startup_time else None,
            "uptime": str(datetime.now() - self._startup_time) if self._startup_time else None,
            "component_health": self._component_health.copy(),
            "config_loaded": self._config is not None,
            "users": {
                "total": len(users),
                "configured": sum(1 for user in users if user.can_receive_notifications),
            },
            "last_tick": {
                "started_at": last_tick.started_at.isoformat(),
                "listings_processed": last_tick.listings_processed,
                "notifications_sent": last_tick.notifications_sent,
                "delivery_failures": last_tick.delivery_failures,
                "fetch_failed": last_tick.fetch_failed,
            }
            if last_tick
            else None,
            "errors": self.error_tracker.get_error_stats(),
        }

    async def run(self) -> None:
        """Run the complete application lifecycle."""
        try:
            self._setup_signal_handlers()

            if not await self.initialize():
                self.logger.error("System initialization failed")
                return

            await self.start()

        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        except Exception as e:
            self.logger.error(f"Unexpected error in application: {e}", exc_info=True)
        finally:
            await self.shutdown()
