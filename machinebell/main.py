"""Main entry point for the machinebell bot."""

import logging
import sys

from telegram.ext import Application, MessageHandler, filters

from machinebell.bot.formatters import bot_command_descriptions
from machinebell.bot.gateway import TelegramGateway
from machinebell.bot.handlers import build_command_handlers
from machinebell.config import BotConfig, Config
from machinebell.db.reminder_store import ReminderStore
from machinebell.db.stats_recorder import StatsRecorder
from machinebell.engine.escalation import EscalationController
from machinebell.engine.scheduler import ReminderScheduler
from machinebell.engine.timers import JobQueueTimers
from machinebell.utils.error_handler import error_handler
from machinebell.utils.time_utils import utc_now

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL),
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


async def post_init(application: Application) -> None:
    """Load persisted state and restart timers after the application is created."""
    config: BotConfig = application.bot_data["config"]
    gateway: TelegramGateway = application.bot_data["gateway"]

    if application.job_queue is None:
        raise RuntimeError("The job queue is required: install python-telegram-bot[job-queue]")

    store = ReminderStore(Config.reminders_path())
    await store.load()
    stats = StatsRecorder(Config.stats_path())
    await stats.load()

    timers = JobQueueTimers(application.job_queue)
    escalation = EscalationController(
        gateway,
        timers,
        stats,
        config.language,
        max_attempts=config.require_reply_number_of_reminder_messages,
        interval_minutes=config.require_reply_time_between_reminder_messages_in_min,
    )
    scheduler = ReminderScheduler(config, store, stats, gateway, timers, escalation)

    application.bot_data["stats"] = stats
    application.bot_data["scheduler"] = scheduler

    # Restart timers that were running before the last shutdown
    restored = await scheduler.restore()
    logger.info(f"Restored {restored} reminders")

    commands = bot_command_descriptions(list(config.reminder_commands), config.language)
    logger.info(
        "Bot command list:\n" + "\n".join(f"{name} - {description}" for name, description in commands)
    )
    await application.bot.set_my_commands(commands)

    logger.info("machinebell initialized successfully")


async def post_shutdown(application: Application) -> None:
    logger.info("machinebell shut down")


def main() -> None:
    """Start the bot."""
    # Validate configuration
    try:
        bot_config = Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    # Create application
    application = (
        Application.builder()
        .token(bot_config.token)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    gateway = TelegramGateway(application.bot)
    application.bot_data["config"] = bot_config
    application.bot_data["gateway"] = gateway
    application.bot_data["started_at"] = utc_now()

    # Commands
    for handler in build_command_handlers(bot_config):
        application.add_handler(handler)

    # Replies to due notices and nudges
    application.add_handler(
        MessageHandler(filters.REPLY & ~filters.COMMAND, gateway.handle_reply)
    )

    # Error handler
    application.add_error_handler(error_handler)

    # Start the bot
    logger.info("Starting machinebell bot...")
    application.run_polling(allowed_updates=["message"])


if __name__ == "__main__":
    main()
