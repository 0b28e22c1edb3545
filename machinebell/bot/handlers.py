"""Command handlers."""

import logging
import socket
from typing import Awaitable, Callable

from telegram import Update
from telegram.ext import CommandHandler, ContextTypes

from machinebell.bot.formatters import (
    command_names,
    format_help_message,
    format_not_found_message,
    format_started_message,
    format_status_message,
    format_stopped_message,
    help_command_name,
)
from machinebell.config import BotConfig
from machinebell.db.models import ReminderCommandDef
from machinebell.db.stats_recorder import StatsRecorder
from machinebell.engine.scheduler import ReminderScheduler
from machinebell.utils.time_utils import minutes, to_utc, utc_now

logger = logging.getLogger(__name__)

Handler = Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the help command."""
    if not update.message:
        return

    config: BotConfig = context.bot_data["config"]
    message = format_help_message(
        list(config.reminder_commands),
        config.language,
        host=socket.gethostname(),
        started_at=context.bot_data["started_at"],
        now=utc_now(),
        tz=config.timezone,
    )
    await update.message.reply_html(message)


def make_start_command(command: ReminderCommandDef) -> Handler:
    async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle the start command of a machine."""
        if not update.effective_user or not update.message:
            return

        config: BotConfig = context.bot_data["config"]
        scheduler: ReminderScheduler = context.bot_data["scheduler"]
        stats: StatsRecorder = context.bot_data["stats"]
        chat_id = update.message.chat_id
        user = update.effective_user

        # A running reminder counts as stopped by whoever restarts it
        await scheduler.stop(chat_id, user.id, command.id)
        await stats.record(chat_id, user.id, command.id, "started")

        reference_time = to_utc(update.message.date, "UTC")
        count = stats.count_of(chat_id, user.id, "started", command.id)
        await update.message.reply_html(
            format_started_message(
                command,
                config.language,
                user_name=user.first_name,
                ready_at=reference_time + minutes(command.wait_time_in_min),
                count=count,
                tz=config.timezone,
            )
        )

        await scheduler.start(chat_id, command.id, reference_time)

    return start_command


def make_status_command(command: ReminderCommandDef) -> Handler:
    async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle the status command of a machine."""
        if not update.message:
            return

        config: BotConfig = context.bot_data["config"]
        scheduler: ReminderScheduler = context.bot_data["scheduler"]

        reminder = scheduler.status(update.message.chat_id, command.id)
        if reminder is None:
            await update.message.reply_html(format_not_found_message(command, config.language))
            return

        await update.message.reply_html(
            format_status_message(
                command,
                config.language,
                reminder,
                due_at=scheduler.due_at(reminder),
                tz=config.timezone,
            )
        )

    return status_command


def make_stop_command(command: ReminderCommandDef) -> Handler:
    async def stop_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle the stop command of a machine."""
        if not update.effective_user or not update.message:
            return

        config: BotConfig = context.bot_data["config"]
        scheduler: ReminderScheduler = context.bot_data["scheduler"]

        reminder = await scheduler.stop(
            update.message.chat_id, update.effective_user.id, command.id
        )
        if reminder is None:
            await update.message.reply_html(format_not_found_message(command, config.language))
            return

        await update.message.reply_html(
            format_stopped_message(command, config.language, reminder, tz=config.timezone)
        )

    return stop_command


def build_command_handlers(config: BotConfig) -> list[CommandHandler]:
    """Build the help command and the start/status/stop commands of every machine."""
    handlers = [CommandHandler(help_command_name(config.language), help_command)]

    for command in config.reminder_commands:
        names = command_names(command, config.language)
        handlers.append(CommandHandler(names.start, make_start_command(command)))
        handlers.append(CommandHandler(names.status, make_status_command(command)))
        handlers.append(CommandHandler(names.stop, make_stop_command(command)))
        logger.info(
            f"Check messages for the commands: '/{names.start}', '/{names.status}', '/{names.stop}'"
        )

    return handlers
