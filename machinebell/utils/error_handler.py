"""Global error handler for the bot."""

import logging
import traceback

from telegram import Update
from telegram.ext import ContextTypes

from machinebell.bot.formatters import format_error_message
from machinebell.config import BotConfig

logger = logging.getLogger(__name__)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors in update handlers and jobs."""
    # Log the error
    logger.error("Exception while handling an update:", exc_info=context.error)

    # Get the traceback
    tb_list = traceback.format_exception(None, context.error, context.error.__traceback__)
    tb_string = "".join(tb_list)

    # Log full traceback
    logger.error(f"Traceback:\n{tb_string}")

    # Jobs have no update to answer
    if not isinstance(update, Update) or not update.effective_message:
        return

    config: BotConfig | None = context.bot_data.get("config")
    if config is None:
        return

    # Try to notify the chat
    try:
        await update.effective_message.reply_text(format_error_message(config.language))
    except Exception as e:
        logger.error(f"Failed to send error message to chat: {e}")
